"""Main entry point for the metrics reporter."""
import argparse
import logging
import os
import signal
import sys
import threading
import time

from dogreporter.config import load_config
from dogreporter.control_api import ControlAPI
from dogreporter.factory import create_reporter
from dogreporter.registry import MetricRegistry


def build_log_handler(log_format: str) -> logging.Handler:
    """Create the stderr handler for the configured log format."""
    fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

    handler = logging.StreamHandler()
    if log_format == "json":
        from pythonjsonlogger.json import JsonFormatter

        handler.setFormatter(JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
    else:
        handler.setFormatter(logging.Formatter(fmt, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def setup_logging(log_level: str, log_format: str):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    handler = build_log_handler(log_format)
    logging.basicConfig(level=level, handlers=[handler], force=True)

    # Reduce noise from some libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def register_process_metrics(registry: MetricRegistry):
    """Register gauges describing this process."""
    start_time = time.time()
    registry.gauge("process.uptime_seconds", lambda: time.time() - start_time)
    registry.gauge("process.threads", threading.active_count)
    if hasattr(os, "getloadavg"):
        registry.gauge("process.load_1m", lambda: os.getloadavg()[0])


def main():
    """Main function."""
    parser = argparse.ArgumentParser(
        description="dogreporter - report an in-process metrics registry as time series"
    )
    parser.add_argument(
        "--config",
        "-c",
        required=True,
        help="Path to configuration YAML file"
    )

    args = parser.parse_args()

    # Load configuration
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config.global_.log_level, config.global_.log_format)
    logger = logging.getLogger(__name__)

    logger.info(f"Configuration loaded from: {args.config}")
    logger.info(f"Report period: {config.reporter.period_s}s")
    logger.info(f"Transport: {config.transport.type}")

    registry = MetricRegistry()
    register_process_metrics(registry)

    try:
        reporter = create_reporter(config, registry)
    except Exception as e:
        logger.error(f"Failed to initialize reporter: {e}", exc_info=True)
        sys.exit(1)

    reporter.start(config.reporter.period_s)
    logger.info("Reporter started")

    # Setup signal handlers
    stopped = threading.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        reporter.stop()
        stopped.set()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    if not config.global_.control_api_enabled:
        stopped.wait()
        return

    control_api = ControlAPI(reporter, period_s=config.reporter.period_s)

    # Run control API (blocking)
    logger.info(f"Starting control API on port {config.global_.control_api_port}")
    try:
        control_api.run(
            host="0.0.0.0",
            port=config.global_.control_api_port
        )
    except Exception as e:
        logger.error(f"Control API error: {e}", exc_info=True)
        reporter.stop()
        sys.exit(1)


if __name__ == "__main__":
    main()
