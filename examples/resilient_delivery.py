#!/usr/bin/env python3
"""
Example of a production logging pipeline with ff-logpipe.

Ships records to a flaky sink through retries, a circuit breaker and a dead
letter queue, while batching errors for a periodic report.
"""

import asyncio
import random

from ff_logpipe import (
    BatchAggregator,
    CircuitBreakerTransport,
    ConsoleTransport,
    DeadLetterQueue,
    Logger,
    RetryTransport,
    TransportError,
)
from ff_logpipe.enrichers import MetadataEnricher, redact_secrets
from ff_logpipe.transports import Transport


class FlakyHTTPSink(Transport):
    """Stands in for a remote log collector that drops some requests."""

    def __init__(self, failure_rate: float = 0.4):
        self.failure_rate = failure_rate
        self.delivered = 0

    def write(self, record, formatter):
        if random.random() < self.failure_rate:
            raise TransportError("connection reset by peer", code="ECONNRESET")
        self.delivered += 1


def report(batch):
    print(f"\n-- error report: {len(batch)} records --")
    for item in batch:
        print("   ", item.formatter.format(item.record))


async def main():
    sink = FlakyHTTPSink()
    dlq = DeadLetterQueue(
        CircuitBreakerTransport(sink, threshold=5, timeout=2.0),
        max_retries=1,
        base_delay=0.05,
        dead_letter_file="dead-letters.jsonl",
        on_dead_letter=lambda letter: print(f"dead letter: {letter.record.message}"),
    )

    logger = Logger(
        level="debug",
        prefix="CHECKOUT",
        context={"service": "shop"},
        async_mode=True,
        enrichers=[redact_secrets(), MetadataEnricher.add_process_info()],
        transports=[
            ConsoleTransport(),
            RetryTransport(dlq, max_attempts=3, base_delay=0.05),
        ],
        aggregators=[BatchAggregator(max_size=3, flush_callback=report)],
        on_error=lambda event: print(f"{event.type} error: {event.error}"),
    )

    request_logger = logger.create_child(context={"request_id": "req-123"})
    for i in range(10):
        request_logger.info("Cart updated", item=i, token="abc123")
        if i % 3 == 0:
            request_logger.error("Payment declined", attempt=i)

    await logger.aclose()
    print(f"\ndelivered={sink.delivered} dead_letters={len(dlq.get_dead_letters())}")


if __name__ == "__main__":
    asyncio.run(main())
