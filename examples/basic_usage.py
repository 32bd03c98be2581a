#!/usr/bin/env python3
"""Build a template and run it on an in-process operator.

This demonstrates the producer API end to end without a remote operator:

* register plain Python callables as services
* build a template with retries, a failure policy and a condition
* consume the updates by iteration, then await the outcome

Pass `--url wss://...` to run the same template on a remote operator
instead (the services must exist there).
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any, Sequence

from taskplan import Producer, TemplateBuilder
from taskplan.config import ProducerSettings
from taskplan.connection.local import LocalOperator, ServiceCall
from taskplan.logging import configure_logging


def fetch_order(call: ServiceCall) -> dict[str, Any]:
    return {"id": call.input, "total": 120, "status": "paid"}


def send_receipt(call: ServiceCall) -> dict[str, Any]:
    return {"sent": True, "to": call.configuration["customer"]}


def flag_for_review(call: ServiceCall) -> dict[str, Any]:
    return {"flagged": call.input["id"]}


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run an order-processing template.")
    parser.add_argument("--order", type=int, default=42, help="Order id passed as task input")
    parser.add_argument("--url", default="local://", help="Operator URL")
    return parser.parse_args(argv)


def build_template() -> TemplateBuilder:
    return (
        TemplateBuilder()
        .add_service("fetch-order", "^1.0.0")
        .with_alias("order")
        .with_retry(3, 500)
        .add_condition("service{order}.total", ">", 100)
        .then(lambda b: b.add_service("flag-for-review").on_fail_skip())
        .add_service("send-receipt")
        .with_configuration({"customer": "service{order}.id"})
    )


async def _run(args: argparse.Namespace) -> int:
    operator = LocalOperator(
        {
            "fetch-order": fetch_order,
            "send-receipt": send_receipt,
            "flag-for-review": flag_for_review,
        }
    )
    settings = ProducerSettings()
    configure_logging(settings.log_level)

    async with await Producer.connect(args.url, settings=settings, operator=operator) as producer:
        run = producer.task(build_template(), input=args.order, meta={"source": "example"}).run()
        async for event in run:
            print(json.dumps(event.to_json()))
        outcome = await run

    print(f"Outcome: ok={outcome.ok} value={outcome.value!r}")
    return 0 if outcome.ok else 1


def main(argv: Sequence[str] | None = None) -> int:
    return asyncio.run(_run(_parse_args(argv)))


if __name__ == "__main__":
    raise SystemExit(main())
