#!/usr/bin/env python3
"""
Main entry point for Campaign Experiments.

Commands:
- serve: run the REST API with uvicorn
- simulate: drive a seeded synthetic two-variant test through the engine
  and print the completed test as JSON
"""

from __future__ import annotations

import argparse
import json
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

import numpy as np

from campaign_experiments.config.settings import Settings, get_settings
from campaign_experiments.core.data_types import ABTest, EventType
from campaign_experiments.experiments.service import ABTestingService
from campaign_experiments.monitoring.logger import (
    LogCategory,
    LogFormat,
    get_logger,
    log_system,
    setup_logging,
)


logger = get_logger("main", LogCategory.SYSTEM)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Campaign Experiments",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the REST API")
    serve_parser.add_argument("--host", type=str, default=None, help="Host to bind to (defaults to api.host)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind to (defaults to api.port)")

    # Simulate command
    sim_parser = subparsers.add_parser("simulate", help="Run a synthetic experiment")
    sim_parser.add_argument("--impressions", type=int, default=5000, help="Impressions per variant")
    sim_parser.add_argument("--control-ctr", type=float, default=0.10, help="Click probability of control")
    sim_parser.add_argument("--variant-ctr", type=float, default=0.12, help="Click probability of variant B")
    sim_parser.add_argument("--cvr", type=float, default=0.10, help="Conversion probability per click")
    sim_parser.add_argument("--order-value", type=float, default=40.0, help="Mean revenue per conversion")
    sim_parser.add_argument("--seed", type=int, default=42, help="Random seed")
    sim_parser.add_argument("--workers", type=int, default=8, help="Concurrent event writers")

    # Common arguments
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to an experiments YAML file",
    )
    parser.add_argument(
        "--log-level",
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (defaults to logging.level)",
    )
    parser.add_argument(
        "--log-format",
        choices=["json", "text"],
        default=None,
        help="Log format (defaults to logging.format)",
    )

    return parser.parse_args(argv)


def run_serve(args: argparse.Namespace, settings: Settings) -> None:
    """Run the API server.

    Args:
        args: Command line arguments.
        settings: Application settings.
    """
    import uvicorn

    from campaign_experiments.monitoring.api import create_app

    host = args.host or settings.api.host
    port = args.port or settings.api.port
    logger.info(f"Starting API server on {host}:{port}")
    uvicorn.run(create_app(settings=settings), host=host, port=port, log_config=None)


def generate_events(
    rng: np.random.Generator,
    variant_id: str,
    impressions: int,
    ctr: float,
    cvr: float,
    order_value: float,
) -> list[tuple[str, EventType, float | None]]:
    """Draw the event stream of one variant."""
    clicks = rng.random(impressions) < ctr
    n_clicks = int(clicks.sum())
    conversions = rng.random(n_clicks) < cvr
    values = rng.exponential(order_value, int(conversions.sum()))

    events: list[tuple[str, EventType, float | None]] = [(variant_id, EventType.IMPRESSION, None)] * impressions
    events += [(variant_id, EventType.CLICK, None)] * n_clicks
    events += [(variant_id, EventType.CONVERSION, round(float(v), 2)) for v in values]
    return events


def run_simulation(args: argparse.Namespace, service: ABTestingService) -> ABTest:
    """Create, run and complete one synthetic test.

    Events of both variants are shuffled together and recorded from a
    thread pool, so the run also exercises concurrent recording.
    """
    rng = np.random.default_rng(args.seed)
    test = service.create_test(
        {
            "campaignId": "simulation",
            "name": "Simulated headline test",
            "primaryMetric": "ctr",
            "secondaryMetrics": ["conversionRate", "revenue"],
            "minimumSampleSize": min(1000, 2 * args.impressions),
            "variants": [
                {"id": "control", "name": "Control", "type": "COPY", "trafficSplit": 50},
                {"id": "variant-b", "name": "Variant B", "type": "COPY", "trafficSplit": 50},
            ],
        },
        created_by="simulator",
    )
    service.start_test(test.id)

    events = generate_events(rng, "control", args.impressions, args.control_ctr, args.cvr, args.order_value)
    events += generate_events(rng, "variant-b", args.impressions, args.variant_ctr, args.cvr, args.order_value)
    order = rng.permutation(len(events))

    def record(index: int) -> None:
        variant_id, event_type, value = events[index]
        service.record_event(test.id, variant_id, event_type, value)

    with ThreadPoolExecutor(max_workers=args.workers) as pool:
        # list() surfaces the first recording error
        list(pool.map(record, (int(i) for i in order)))

    log_system(f"Recorded {len(events)} simulated events", test_id=test.id)
    return service.complete_test(test.id)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    settings = get_settings()
    if args.config:
        # Environment values still win over the file
        experiments = Settings().load_experiment_config(args.config)
        settings = settings.model_copy(update={"experiments": experiments})

    # Setup logging
    log_format = LogFormat(args.log_format or settings.logging.format)
    setup_logging(
        level=args.log_level or settings.logging.level,
        log_format=log_format,
        log_file=settings.logging.file_path,
    )

    logger.info(
        f"{settings.app_name} v{settings.app_version}",
        extra={"extra_data": {"command": args.command, "environment": settings.environment}},
    )

    try:
        if args.command == "serve":
            run_serve(args, settings)
        elif args.command == "simulate":
            service = ABTestingService.from_settings(settings)
            result: dict[str, Any] = run_simulation(args, service).to_dict()
            print(json.dumps(result, indent=2))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Application error: {e}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
