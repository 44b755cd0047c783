"""CLI entry point for running polling sources.

Usage:
    python -m pollsource run orders.yaml --windows 10
    python -m pollsource run orders.yaml --windows 0 --interval 5 --max-restarts 3
    python -m pollsource check orders.yaml
    python -m pollsource checkpoint show orders
    python -m pollsource checkpoint clear orders

Emitted tuples go to stdout as JSON lines; logs go to stderr.
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from typing import Any, List, Optional, TextIO

from pollsource.lib.config_loader import load_operator, load_operator_factory
from pollsource.lib.context import OperatorContext
from pollsource.lib.env import load_env_file
from pollsource.lib.errors import SourceError
from pollsource.lib.logging import setup_logging
from pollsource.lib.ports import CallbackOutputPort, CollectingOutputPort
from pollsource.lib.runner import LocalRunner, RestartPolicy
from pollsource.lib.state import delete_checkpoint, list_checkpoints, load_checkpoint_record

logger = logging.getLogger(__name__)


def json_lines_port(stream: TextIO) -> CallbackOutputPort:
    """Output port writing each tuple as one JSON line."""

    def write(tuple_: Any) -> None:
        stream.write(json.dumps(tuple_, default=str) + "\n")
        stream.flush()

    return CallbackOutputPort(write)


def cmd_run(args: argparse.Namespace) -> int:
    factory = load_operator_factory(args.config, json_lines_port(sys.stdout))
    runner = LocalRunner(
        factory,
        OperatorContext(operator_id=args.name or args.config),
        windows=args.windows or None,
        polls_per_window=args.polls_per_window,
        poll_interval=args.interval,
        restart=RestartPolicy(
            max_restarts=args.max_restarts,
            backoff_seconds=args.backoff,
        ),
        state_name=args.name,
        state_dir=args.state_dir,
    )

    def handle_signal(signum: int, frame: Any) -> None:
        logger.info("Received signal %s, stopping after the current row", signum)
        runner.stop()

    previous = {sig: signal.signal(sig, handle_signal) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        result = runner.run()
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
    logger.info(
        "Run complete: %d windows, %d tuples, %d restarts",
        result.windows_completed,
        result.tuples_emitted,
        result.restarts,
    )
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    """Open and close the connection without emitting anything."""
    operator = load_operator(args.config, CollectingOutputPort())
    try:
        operator.setup(OperatorContext(operator_id=args.config))
        print(f"OK: connected to {operator.config.display_name if operator.config else args.config}")
    finally:
        operator.teardown()
    return 0


def cmd_checkpoint(args: argparse.Namespace) -> int:
    if args.action == "list":
        for name, data in list_checkpoints(state_dir=args.state_dir).items():
            print(f"{name}: {data.get('emitted_count', 0)} tuples, updated {data.get('updated_at')}")
        return 0

    if not args.checkpoint_name:
        print("checkpoint name is required", file=sys.stderr)
        return 2

    if args.action == "show":
        record = load_checkpoint_record(args.checkpoint_name, state_dir=args.state_dir)
        if record is None:
            print(f"No checkpoint named {args.checkpoint_name}", file=sys.stderr)
            return 1
        print(json.dumps(record, indent=2, default=str))
        return 0

    deleted = delete_checkpoint(args.checkpoint_name, state_dir=args.state_dir)
    print("Deleted" if deleted else f"No checkpoint named {args.checkpoint_name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pollsource",
        description="Poll a SQL store and emit one tuple per row",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run ten windows, one poll each
    python -m pollsource run orders.yaml --windows 10

    # Run until interrupted, polling every 5 seconds, resuming from a checkpoint
    python -m pollsource run orders.yaml --windows 0 --interval 5 --name orders

    # Test the connection
    python -m pollsource check orders.yaml

    # Inspect or reset a saved checkpoint
    python -m pollsource checkpoint show orders
    python -m pollsource checkpoint clear orders
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--json-log",
        action="store_true",
        help="Output logs in JSON format (for log aggregation systems)",
    )
    parser.add_argument("--log-file", help="Write logs to a file in addition to stderr")
    parser.add_argument("--env-file", help="Load environment variables from this .env file")
    parser.add_argument(
        "--state-dir",
        help="Checkpoint directory (default: $POLLSOURCE_STATE_DIR or .state)",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the source for a number of windows")
    run.add_argument("config", help="Path to the source YAML")
    run.add_argument(
        "--windows",
        type=int,
        default=1,
        help="Windows to run; 0 runs until interrupted (default: 1)",
    )
    run.add_argument("--polls-per-window", type=int, default=1, help="Poll cycles per window")
    run.add_argument("--interval", type=float, default=0.0, help="Seconds between poll cycles")
    run.add_argument("--max-restarts", type=int, default=0, help="Restarts after fatal errors")
    run.add_argument("--backoff", type=float, default=1.0, help="Base restart backoff in seconds")
    run.add_argument("--name", help="Checkpoint name; enables save/restore of progress")
    run.set_defaults(func=cmd_run)

    check = sub.add_parser("check", help="Test connectivity for a source YAML")
    check.add_argument("config", help="Path to the source YAML")
    check.set_defaults(func=cmd_check)

    checkpoint = sub.add_parser("checkpoint", help="Inspect or clear saved checkpoints")
    checkpoint.add_argument("action", choices=["show", "clear", "list"])
    checkpoint.add_argument("checkpoint_name", nargs="?", help="Checkpoint name")
    checkpoint.set_defaults(func=cmd_checkpoint)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose, json_format=args.json_log, log_file=args.log_file)
    if args.env_file:
        load_env_file(args.env_file)

    try:
        return args.func(args)
    except SourceError as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
