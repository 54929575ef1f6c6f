#!/usr/bin/env python3
"""
Catalyst Pipeline CLI

Command-line interface for running the catalyst pipeline.

Usage:
    python cli/run_pipeline.py ingest --source regulatory
    python cli/run_pipeline.py ingest --source earnings --calendar earnings.json
    python cli/run_pipeline.py process --file catalyst.json
    python cli/run_pipeline.py predict --catalyst-id 42
    python cli/run_pipeline.py backfill-embeddings
    python cli/run_pipeline.py freshness
    python cli/run_pipeline.py rescore --catalyst-id 42
    python cli/run_pipeline.py seed-profiles
    python cli/run_pipeline.py serve --port 8001
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add project root to path for imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from utils.json_utils import dump_json
from cli.commands import PipelineOrchestrator, show_freshness, show_stats
from pipeline.errors import CatalystPipelineError
from pipeline.models import DateRange

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO

    # Create formatter
    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("sentence_transformers").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logger.info("Logging configured")


def _write_output(data, output: str):
    with open(output, 'w') as f:
        dump_json(data, f)
    print(f"\nResults saved to: {output}")
    logger.info(f"Results saved to: {output}")


def cmd_ingest(args):
    """Run one source adapter and store new catalysts."""
    logger.info(f"Command: ingest --source {args.source}")
    print(f"Ingesting from {args.source}...")

    window = None
    if args.days:
        if args.source == "earnings":
            window = DateRange.next_days(args.days)
        else:
            window = DateRange.last_days(args.days)

    orchestrator = PipelineOrchestrator()
    try:
        result = orchestrator.run_adapter(args.source, window=window, calendar_path=args.calendar)
    except (CatalystPipelineError, ValueError) as e:
        print(f"Error: {e}")
        logger.error(f"Ingest failed: {e}")
        sys.exit(1)

    print(f"\n{result['message']}")
    if args.output:
        _write_output(result, args.output)


def cmd_process(args):
    """Score and store catalysts from a JSON file."""
    logger.info(f"Command: process --file {args.file}")
    with open(args.file, 'r', encoding='utf-8') as f:
        data = json.load(f)

    submissions = data if isinstance(data, list) else [data.get("catalyst", data)]
    orchestrator = PipelineOrchestrator()

    results = []
    for submission in submissions:
        try:
            result = orchestrator.process_submission(submission)
        except CatalystPipelineError as e:
            print(f"  Rejected {submission.get('ticker', '?')}: {e}")
            logger.warning(f"Rejected submission: {e}")
            continue
        results.append(result)
        catalyst = result["catalyst"]
        status = "created" if result["created"] else "already stored"
        print(
            f"  [{catalyst['id']}] {catalyst['ticker']} {catalyst['type']} "
            f"impact={catalyst['impact_score']} confidence={catalyst['confidence_score']} ({status})"
        )

    print(f"\nProcessed {len(results)}/{len(submissions)} catalysts")
    if args.output:
        _write_output(results, args.output)


def cmd_predict(args):
    """Predict the price reaction for a stored catalyst."""
    logger.info(f"Command: predict --catalyst-id {args.catalyst_id}")
    orchestrator = PipelineOrchestrator()
    try:
        result = orchestrator.predict(catalyst_id=args.catalyst_id)
    except CatalystPipelineError as e:
        print(f"Error: {e}")
        logger.error(f"Prediction failed: {e}")
        sys.exit(1)

    payload = result.to_dict()
    print(f"\n{'='*60}")
    print(f"Prediction for catalyst {args.catalyst_id}{' (cached)' if result.cached else ''}")
    print(f"{'='*60}")
    print(f"Impact: {payload['impact_prediction']}")
    print(f"Confidence: {payload['confidence_score']}")
    movement = payload["price_movement_range"]
    print(f"Price movement: {movement['lower_bound']:+.2f}% to {movement['upper_bound']:+.2f}%")
    for risk in payload["risk_factors"]:
        print(f"  Risk: {risk}")
    print("\nSimilar historical events:")
    for event in payload["similar_historical_events"]:
        print(
            f"  {event['ticker']:<6} {event['event_date']}  "
            f"moved {event['actual_movement']:+.2f}%  similarity {event['similarity_score']:.2f}"
        )

    if args.output:
        _write_output(payload, args.output)


def cmd_backfill_embeddings(args):
    """Generate embeddings for catalysts that have none."""
    logger.info("Command: backfill-embeddings")
    orchestrator = PipelineOrchestrator()
    result = orchestrator.backfill(max_batches=args.max_batches)
    print(result["message"])


def cmd_freshness(args):
    """Show data freshness and expiring API keys."""
    logger.info("Command: freshness")
    orchestrator = PipelineOrchestrator()
    show_freshness(orchestrator)
    if args.output:
        _write_output(orchestrator.freshness(), args.output)


def cmd_rescore(args):
    """Recompute scores for a stored catalyst."""
    logger.info(f"Command: rescore --catalyst-id {args.catalyst_id}")
    orchestrator = PipelineOrchestrator()
    try:
        catalyst = orchestrator.rescore(args.catalyst_id)
    except CatalystPipelineError as e:
        print(f"Error: {e}")
        logger.error(f"Rescore failed: {e}")
        sys.exit(1)
    print(
        f"Rescored {catalyst['ticker']} {catalyst['type']}: "
        f"impact={catalyst['impact_score']} confidence={catalyst['confidence_score']}"
    )


def cmd_seed_profiles(args):
    """Load company profiles used for feature extraction."""
    logger.info("Command: seed-profiles")
    orchestrator = PipelineOrchestrator()
    count = orchestrator.seed_profiles(args.file)
    print(f"Seeded {count} company profiles")


def cmd_stats(args):
    """Show catalyst counts."""
    logger.info("Command: stats")
    show_stats(PipelineOrchestrator())


def cmd_serve(args):
    """Run the HTTP API."""
    import uvicorn
    logger.info(f"Command: serve on {args.host}:{args.port}")
    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)


def main():
    parser = argparse.ArgumentParser(
        description="Catalyst Pipeline CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # ingest
    ingest_parser = subparsers.add_parser(
        "ingest",
        help="Fetch catalysts from one source"
    )
    ingest_parser.add_argument(
        "--source", "-s",
        required=True,
        choices=["regulatory", "filings", "earnings"],
        help="Source adapter to run"
    )
    ingest_parser.add_argument(
        "--days",
        type=int,
        help="Window length in days (default: per-source config)"
    )
    ingest_parser.add_argument(
        "--calendar",
        help="Static earnings calendar JSON (earnings source only)"
    )
    ingest_parser.add_argument(
        "-o", "--output",
        help="Output file for the run summary (JSON)"
    )
    ingest_parser.set_defaults(func=cmd_ingest)

    # process
    process_parser = subparsers.add_parser(
        "process",
        help="Score and store catalysts from a JSON file"
    )
    process_parser.add_argument(
        "--file", "-f",
        required=True,
        help="JSON file with one catalyst or a list of catalysts"
    )
    process_parser.add_argument(
        "-o", "--output",
        help="Output file (JSON)"
    )
    process_parser.set_defaults(func=cmd_process)

    # predict
    predict_parser = subparsers.add_parser(
        "predict",
        help="Predict the price reaction for a catalyst"
    )
    predict_parser.add_argument(
        "--catalyst-id",
        type=int,
        required=True,
        help="Stored catalyst id"
    )
    predict_parser.add_argument(
        "-o", "--output",
        help="Output file (JSON)"
    )
    predict_parser.set_defaults(func=cmd_predict)

    # backfill-embeddings
    backfill_parser = subparsers.add_parser(
        "backfill-embeddings",
        help="Generate missing catalyst embeddings"
    )
    backfill_parser.add_argument(
        "--max-batches",
        type=int,
        help="Stop after this many batches"
    )
    backfill_parser.set_defaults(func=cmd_backfill_embeddings)

    # freshness
    freshness_parser = subparsers.add_parser(
        "freshness",
        help="Check data freshness and API key expiry"
    )
    freshness_parser.add_argument(
        "-o", "--output",
        help="Output file (JSON)"
    )
    freshness_parser.set_defaults(func=cmd_freshness)

    # rescore
    rescore_parser = subparsers.add_parser(
        "rescore",
        help="Recompute scores for a stored catalyst"
    )
    rescore_parser.add_argument(
        "--catalyst-id",
        type=int,
        required=True,
        help="Stored catalyst id"
    )
    rescore_parser.set_defaults(func=cmd_rescore)

    # seed-profiles
    seed_parser = subparsers.add_parser(
        "seed-profiles",
        help="Load company profiles into the store"
    )
    seed_parser.add_argument(
        "--file", "-f",
        help="Profiles JSON (default: config/company_profiles.json)"
    )
    seed_parser.set_defaults(func=cmd_seed_profiles)

    # stats
    stats_parser = subparsers.add_parser(
        "stats",
        help="Show catalyst counts"
    )
    stats_parser.set_defaults(func=cmd_stats)

    # serve
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the HTTP API"
    )
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8001, help="Port (default: 8001)")
    serve_parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes")
    serve_parser.set_defaults(func=cmd_serve)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    setup_logging(args.verbose)

    # Run the command
    args.func(args)


if __name__ == "__main__":
    main()
