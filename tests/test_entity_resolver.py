"""
Tests for Entity Resolver
"""

import json
import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from pipeline.entity_resolver import EntityResolver
from pipeline.errors import EntityResolutionMiss


class TestLookup:
    """Tests for EntityResolver.lookup()."""

    def test_exact_name(self, resolver):
        assert resolver.lookup("KEYTRUDA").primary_ticker == "MRK"

    def test_case_and_whitespace(self, resolver):
        assert resolver.lookup("  keytruda ").primary_ticker == "MRK"

    def test_alias(self, resolver):
        assert resolver.lookup("Semaglutide").primary_ticker == "NVO"

    def test_substring_either_direction(self, resolver):
        assert resolver.lookup("KEYTRUDA 100MG INJECTION").primary_ticker == "MRK"
        assert resolver.lookup("OZEMP").primary_ticker == "NVO"

    def test_short_names_never_substring_match(self, resolver):
        assert resolver.lookup("KEY") is None

    def test_miss(self, resolver):
        assert resolver.lookup("ASPIRIN") is None
        assert resolver.lookup(None) is None

    def test_resolve_raises_on_miss(self, resolver):
        with pytest.raises(EntityResolutionMiss):
            resolver.resolve("ASPIRIN")


class TestMappingFile:
    """Tests for loading mappings from JSON."""

    def test_load_from_path(self, tmp_path):
        path = tmp_path / "mappings.json"
        path.write_text(json.dumps({"mappings": [
            {"raw_name": "HUMIRA", "primary_ticker": "ABBV", "related_tickers": ["AMGN"]},
        ]}))

        resolver = EntityResolver(mapping_path=str(path))

        assert resolver.lookup("HUMIRA").related_tickers == ["AMGN"]

    def test_missing_file_gives_empty_resolver(self, tmp_path):
        resolver = EntityResolver(mapping_path=str(tmp_path / "none.json"))

        assert resolver.mappings == []

    def test_bundled_mappings(self):
        resolver = EntityResolver()

        assert resolver.lookup("KEYTRUDA").primary_ticker == "MRK"
