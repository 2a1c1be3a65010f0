"""
CLI for running the conduit pipeline.

Resolves configuration (flags > YAML file > environment > defaults), builds
SQS/S3 clients and runs the pipeline until SIGINT or SIGTERM.
"""

import argparse
import asyncio
import json
import signal
import sys
from typing import Mapping, Optional

from dotenv import load_dotenv

from conduit.core.config import load_config_file, resolve_config
from conduit.core.errors import ConfigError
from conduit.core.models import PipelineConfig
from conduit.observability.logger import get_logger, setup_logger
from conduit.streaming.pipeline import StreamingPipeline

logger = get_logger(__name__)

DEFAULT_TRANSFORM = "conduit.streaming.transform:prefix_transform"

# Flags that map one-to-one onto configuration options
OPTION_FLAGS = (
    "batch_size",
    "poll_frequency",
    "visibility_timeout",
    "concurrency",
    "queue_url",
    "egress_bucket",
    "max_in_flight",
    "empty_result_policy",
    "shutdown_grace",
    "quarantine_bucket",
)


def build_config(args: argparse.Namespace, environ: Optional[Mapping[str, str]] = None) -> PipelineConfig:
    """
    Resolve the pipeline configuration from parsed arguments.

    Values from --config and from option flags are both explicit; flags win.

    Raises:
        ConfigError: If the configuration cannot be resolved
    """
    explicit = load_config_file(args.config) if args.config else {}
    for name in OPTION_FLAGS:
        value = getattr(args, name, None)
        if value is not None:
            explicit[name] = value
    return resolve_config(explicit, environ)


def _handle_signal(pipeline: StreamingPipeline, signum: int) -> None:
    """
    Handle shutdown signals (SIGINT, SIGTERM) by stopping the pipeline.

    Args:
        pipeline: Running pipeline
        signum: Signal number
    """
    signal_name = signal.Signals(signum).name
    logger.info(f"Received {signal_name} signal, initiating graceful shutdown...")
    pipeline.stop()


async def serve(pipeline: StreamingPipeline) -> dict:
    """
    Run ``pipeline`` with signal handlers installed.

    Returns:
        Final pipeline status
    """
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _handle_signal, pipeline, signum)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            signal.signal(signum, lambda s, f: _handle_signal(pipeline, s))

    await pipeline.run()
    return pipeline.get_status()


def run_pipeline(args: argparse.Namespace) -> int:
    """
    Start the pipeline and block until it is stopped.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, 2 for configuration errors)
    """
    # Lazy imports: boto3 and the metrics server are only needed for `run`
    from conduit.clients.aws import create_session
    from conduit.observability.metrics import start_metrics_server
    from conduit.streaming.pipeline import create_streaming_pipeline
    from conduit.streaming.transform import load_transform

    try:
        config = build_config(args)
        transform = load_transform(args.transform)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        print(json.dumps({"status": "error", "error": str(e)}), file=sys.stderr)
        return 2

    try:
        if args.metrics_port:
            port = start_metrics_server(args.metrics_port)
            logger.info(f"Serving metrics on port {port}")

        session = create_session(args.region, args.endpoint_url)
        pipeline = create_streaming_pipeline(config, transform, session)
        status = asyncio.run(serve(pipeline))

    except Exception as e:
        logger.error(f"Pipeline failed: {e}", exc_info=True)
        print(json.dumps({"status": "error", "error": str(e)}), file=sys.stderr)
        return 1

    print(json.dumps(status, indent=2))
    return 0


def show_config(args: argparse.Namespace) -> int:
    """
    Print the resolved configuration as JSON.

    Returns:
        Exit code (0 for success, 2 for configuration errors)
    """
    try:
        config = build_config(args)
    except ConfigError as e:
        print(json.dumps({"status": "error", "error": str(e)}), file=sys.stderr)
        return 2

    print(config.model_dump_json(indent=2))
    return 0


def _add_option_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--batch-size", type=int, help="Max messages per poll (env: CONDUIT_BATCH_SIZE)")
    parser.add_argument(
        "--poll-frequency", type=int, help="Milliseconds between polls (env: CONDUIT_POLL_FREQUENCY)"
    )
    parser.add_argument(
        "--visibility-timeout",
        type=int,
        help="Seconds a received message stays hidden (env: CONDUIT_VISIBILITY_TIMEOUT)",
    )
    parser.add_argument("--concurrency", type=int, help="Number of lanes (env: CONDUIT_CONCURRENCY)")
    parser.add_argument("--queue-url", help="SQS queue URL (env: CONDUIT_QUEUE_URL)")
    parser.add_argument("--egress-bucket", help="Destination bucket (env: CONDUIT_S3_EGRESS_BUCKET)")
    parser.add_argument(
        "--max-in-flight", type=int, help="Per-lane cap on running stage units, 0 = unbounded"
    )
    parser.add_argument(
        "--empty-result-policy",
        choices=["skip", "ack"],
        help="What to do when a transform yields no artifacts",
    )
    parser.add_argument(
        "--shutdown-grace", type=float, help="Seconds to wait for in-flight work on shutdown"
    )
    parser.add_argument("--quarantine-bucket", help="Bucket for schema-violating message bodies")


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the conduit CLI."""
    parser = argparse.ArgumentParser(
        description="Transform S3 objects announced on an SQS queue",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run against LocalStack with the example transform
  %(prog)s run --queue-url http://localstack:4566/000000000000/ingress-events \\
    --egress-bucket egress --endpoint-url http://localstack:4566

  # Run a custom transform with settings from a file
  %(prog)s run --config conduit.yaml --transform mypackage.transforms:to_csv

  # Show the resolved configuration
  %(prog)s show-config --config conduit.yaml
        """
    )
    parser.add_argument("--env-file", help="Load environment variables from a .env file first")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR (env: LOG_LEVEL)")
    parser.add_argument("--log-format", choices=["json", "text"], help="Log format (env: LOG_FORMAT)")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    run_parser = subparsers.add_parser("run", help="Run the pipeline")
    _add_option_flags(run_parser)
    run_parser.add_argument(
        "--transform",
        default=DEFAULT_TRANSFORM,
        help=f"Transform import path 'package.module:function' (default: {DEFAULT_TRANSFORM})",
    )
    run_parser.add_argument("--region", help="AWS region (env: AWS_REGION)")
    run_parser.add_argument("--endpoint-url", help="Custom AWS endpoint (env: CONDUIT_AWS_ENDPOINT_URL)")
    run_parser.add_argument("--metrics-port", type=int, help="Serve Prometheus metrics on this port")

    config_parser = subparsers.add_parser("show-config", help="Print the resolved configuration")
    _add_option_flags(config_parser)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.env_file:
        load_dotenv(args.env_file, override=False)

    # Reconfigure now that LOG_LEVEL / LOG_FORMAT may come from the .env file
    setup_logger(level=args.log_level, format_type=args.log_format)

    if args.command == "run":
        return run_pipeline(args)
    elif args.command == "show-config":
        return show_config(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
