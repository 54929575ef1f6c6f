"""
Tests for PipelineOrchestrator
"""

import json
import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from pipeline.errors import CatalystNotFoundError, CatalystValidationError, CredentialMissingError


def submission(**changes):
    data = {
        "type": "filing",
        "ticker": "msft",
        "title": "Microsoft Files 8-K",
        "event_date": "2025-01-14T16:05:00-05:00",
        "source_data": {"form_type": "8-K"},
    }
    data.update(changes)
    return data


class TestProcessSubmission:
    """Tests for direct submissions."""

    def test_created_and_published(self, orchestrator):
        subscription = orchestrator.channel.subscribe()

        result = orchestrator.process_submission(submission())

        assert result["created"] is True
        assert result["catalyst"]["ticker"] == "MSFT"
        assert result["catalyst"]["event_date"] == "2025-01-14T21:05:00"
        event = subscription.poll()
        assert event.kind == "insert"
        assert event.ticker == "MSFT"

    def test_first_write_wins(self, orchestrator):
        first = orchestrator.process_submission(submission())
        subscription = orchestrator.channel.subscribe()

        second = orchestrator.process_submission(submission(title="Something else"))

        assert second["created"] is False
        assert second["catalyst"]["id"] == first["catalyst"]["id"]
        assert second["catalyst"]["title"] == "Microsoft Files 8-K"
        assert second["catalyst"]["impact_score"] == first["catalyst"]["impact_score"]
        assert subscription.poll() is None
        assert orchestrator.store.count() == 1

    def test_missing_ticker(self, orchestrator):
        with pytest.raises(CatalystValidationError):
            orchestrator.process_submission(submission(ticker=""))

    def test_missing_title(self, orchestrator):
        with pytest.raises(CatalystValidationError):
            orchestrator.process_submission(submission(title=None))

    def test_history_feeds_predicted_impact(self, orchestrator):
        earlier = orchestrator.process_submission(submission(event_date="2024-10-01"))
        orchestrator.store.record_outcome(earlier["catalyst"]["id"], 4.0, days_after=2)

        result = orchestrator.process_submission(submission())

        assert result["historical_data_points"] == 1
        assert result["predicted_impact"]["expected_change"] == 4.0
        assert result["predicted_impact"]["timeframe_days"] == 2


class TestRescore:
    """Tests for explicit rescoring."""

    def test_rescore_publishes_update(self, orchestrator):
        catalyst = orchestrator.process_submission(submission())["catalyst"]
        subscription = orchestrator.channel.subscribe()

        updated = orchestrator.rescore(catalyst["id"])

        event = subscription.poll()
        assert event.kind == "update"
        assert event.catalyst_id == catalyst["id"]
        assert updated["id"] == catalyst["id"]

    def test_rescore_keeps_row_and_cached_predictions(self, orchestrator):
        catalyst = orchestrator.process_submission(submission())["catalyst"]
        orchestrator.predict(catalyst_id=catalyst["id"])

        orchestrator.rescore(catalyst["id"])

        assert orchestrator.store.count() == 1
        assert orchestrator.store.get(catalyst["id"]) is not None
        assert orchestrator.store.prediction_count(catalyst["id"]) == 1

    def test_rescore_unknown(self, orchestrator):
        with pytest.raises(CatalystNotFoundError):
            orchestrator.rescore(404)


class TestRunAdapter:
    """Tests for adapter runs through the orchestrator."""

    def test_static_calendar(self, orchestrator, tmp_path):
        calendar = tmp_path / "earnings.json"
        calendar.write_text(json.dumps({"earnings": [
            {"ticker": "AAPL", "company_name": "Apple Inc.", "report_date": "2099-01-30"},
            {"ticker": "NVDA", "company_name": "NVIDIA", "report_date": "2099-02-26"},
        ]}))

        first = orchestrator.run_adapter("earnings", calendar_path=str(calendar))
        second = orchestrator.run_adapter("earnings", calendar_path=str(calendar))

        assert first["processed"] == 2
        assert first["catalysts"] == 2
        assert second["catalysts"] == 0
        assert second["details"]["already_stored"] == 2
        assert orchestrator.store.count("earnings") == 2

    def test_calendar_only_for_earnings(self, orchestrator, tmp_path):
        with pytest.raises(ValueError):
            orchestrator.build_adapter("filings", calendar_path=str(tmp_path / "x.json"))

    def test_unknown_source(self, orchestrator):
        with pytest.raises(ValueError):
            orchestrator.build_adapter("twitter")

    def test_missing_credential(self, orchestrator):
        with pytest.raises(CredentialMissingError):
            orchestrator.run_adapter("filings")


class TestMaintenance:
    """Tests for profiles, stats and predictions."""

    def test_seed_profiles(self, orchestrator, tmp_path):
        path = tmp_path / "profiles.json"
        path.write_text(json.dumps({"profiles": [
            {"ticker": "AAPL", "market_cap": 3.4e12, "sector": "Technology"},
            {"ticker": "MRK", "market_cap": 2.5e11, "sector": "Healthcare"},
        ]}))

        assert orchestrator.seed_profiles(str(path)) == 2
        assert orchestrator.store.get_profile("AAPL").sector == "Technology"

    def test_default_profiles_file_loads(self, orchestrator):
        assert orchestrator.seed_profiles() > 0

    def test_stats(self, orchestrator):
        orchestrator.process_submission(submission())

        stats = orchestrator.stats()

        assert stats["total"] == 1
        assert stats["by_type"]["filing"] == 1
        assert stats["by_type"]["earnings"] == 0

    def test_predict_requires_input(self, orchestrator):
        with pytest.raises(ValueError):
            orchestrator.predict()
