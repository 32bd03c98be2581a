"""Command-line entry point.

    taskplan validate plan.json
    taskplan run plan.json --input '{"id": 7}' --meta owner=ops --url wss://operator/tasks
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError as SettingsValidationError

from taskplan import __version__
from taskplan.config import ProducerSettings
from taskplan.errors import TransportError, ValidationError
from taskplan.logging import configure_logging
from taskplan.producer import Producer
from taskplan.run.events import UpdateEvent
from taskplan.template.nodes import Template
from taskplan.template.serialization import dumps, loads

logger = logging.getLogger(__name__)


def _parse_meta(values: list[str] | None) -> dict[str, str]:
    meta: dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise argparse.ArgumentTypeError(f"--meta expects KEY=VALUE, got {item!r}")
        meta[key.strip()] = value
    return meta


def _load_template(path: Path) -> Template:
    return loads(path.read_text(encoding="utf-8"))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taskplan",
        description="Validate task templates and run them on an operator",
    )
    parser.add_argument("--version", action="version", version=f"taskplan {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser(
        "validate", help="Validate a template file and print its canonical JSON"
    )
    validate.add_argument("template", type=Path, help="Path to a template JSON file")

    run = subparsers.add_parser("run", help="Submit a template and stream its updates")
    run.add_argument("template", type=Path, help="Path to a template JSON file")
    run.add_argument("--input", default=None, help="Task input as a JSON value")
    run.add_argument(
        "--meta",
        action="append",
        default=None,
        metavar="KEY=VALUE",
        help="Task metadata entry (repeatable)",
    )
    run.add_argument(
        "--url",
        default=None,
        help="Operator URL (defaults to TASKPLAN_OPERATOR_URL)",
    )

    return parser


def _print_event(event: UpdateEvent) -> None:
    print(json.dumps(event.to_json(), ensure_ascii=False), flush=True)


async def _run_task(
    template: Template,
    *,
    settings: ProducerSettings,
    url: str | None,
    input: Any,
    meta: dict[str, str],
) -> int:
    async with await Producer.connect(url, settings=settings) as producer:
        runner = producer.task(template, input=input, meta=meta)
        outcome = await runner.run(on_update=_print_event)

    if outcome.ok:
        return 0
    logger.warning(
        "Task failed", extra={"error_kind": outcome.error_kind, "reason": outcome.message}
    )
    return 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = ProducerSettings()
    except SettingsValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your environment or .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        if args.command == "validate":
            template = _load_template(args.template)
            print(dumps(template))
            return 0

        if args.command == "run":
            template = _load_template(args.template)
            task_input = json.loads(args.input) if args.input is not None else None
            meta = _parse_meta(args.meta)
            return asyncio.run(
                _run_task(template, settings=settings, url=args.url, input=task_input, meta=meta)
            )

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except ValidationError as e:
        logger.warning("Invalid template", extra={"violations": e.violations})
        print(str(e), file=sys.stderr)
        return 2

    except (json.JSONDecodeError, argparse.ArgumentTypeError, FileNotFoundError) as e:
        print(f"Invalid argument: {e}", file=sys.stderr)
        return 2

    except TransportError as e:
        logger.error("Operator unreachable", extra={"reason": str(e)})
        print(str(e), file=sys.stderr)
        return 3

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
