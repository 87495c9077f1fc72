"""
Trial runner: sample a message, encrypt, decrypt, and classify every
trivial ciphertext met on the way (including relaxed-variant rejections).

Trials are independent. ``run_trials`` spreads them over worker threads,
each with its own random source and StatisticsAggregator, and reduces the
aggregators once every worker is done.
"""

import logging
import random
import time
import uuid
from dataclasses import dataclass
from typing import Optional

import anyio
import anyio.to_thread
from sqlalchemy.ext.asyncio import AsyncEngine

from exphe.config import SchemeConfig
from exphe.crypto.classifier import Classification, classify_trivial_case
from exphe.crypto.keys import KeyParameters
from exphe.crypto.numtheory import system_random
from exphe.crypto.scheme import (
    Encryption,
    EncryptionRandomness,
    check_message_bounds,
    decrypt,
    default_config,
    encrypt,
    sample_message,
)
from exphe.db import check_db_connection, record_run, record_trivial_event
from exphe.errors import SchemeError, SearchExhausted
from exphe.stats import StatisticsAggregator, StatisticsSummary, TrialOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrivialEvent:
    message: int
    randomness: EncryptionRandomness
    group_order: int
    record: Classification


@dataclass(frozen=True)
class TrialResult:
    encryption: Encryption
    decrypted: int
    encrypt_seconds: float
    decrypt_seconds: float
    events: tuple[TrivialEvent, ...]

    @property
    def roundtrip_ok(self) -> bool:
        return self.decrypted == self.encryption.message

    def outcome(self) -> TrialOutcome:
        return TrialOutcome(
            trivial=self.encryption.trivial,
            encrypt_seconds=self.encrypt_seconds,
            decrypt_seconds=self.decrypt_seconds,
            ciphertext_bits=self.encryption.bit_length,
            rejections=self.encryption.rejections,
            roundtrip_ok=self.roundtrip_ok,
            cases=tuple(e.record.label for e in self.events),
        )


@dataclass
class TrialReport:
    run_id: str
    summary: StatisticsSummary
    events: list[TrivialEvent]


def classify_event(
    message: int, randomness: EncryptionRandomness, params: KeyParameters, config: SchemeConfig
) -> TrivialEvent:
    group_order = params.group_order(config.group_order)
    record = classify_trivial_case(
        message,
        randomness.z,
        randomness.w,
        group_order,
        max_order_iterations=config.max_order_iterations,
        max_factor_iterations=config.max_factor_iterations,
    )
    return TrivialEvent(message=message, randomness=randomness, group_order=group_order, record=record)


def run_trial(
    params: KeyParameters,
    config: Optional[SchemeConfig] = None,
    rng: Optional[random.Random] = None,
    message: Optional[int] = None,
) -> TrialResult:
    config = config or default_config(params)
    rng = rng or system_random()
    if message is None:
        message = sample_message(params, config, rng)

    start = time.perf_counter()
    encryption = encrypt(message, params, config, rng)
    encrypt_seconds = time.perf_counter() - start

    start = time.perf_counter()
    decrypted = decrypt(encryption.ciphertext, params)
    decrypt_seconds = time.perf_counter() - start

    trivial = list(encryption.rejected)
    if encryption.trivial:
        trivial.append(encryption.randomness)
    events = tuple(classify_event(message, r, params, config) for r in trivial)

    if decrypted != message:
        logger.warning("round-trip mismatch: M=%d decrypted to %d", message, decrypted)
    return TrialResult(
        encryption=encryption,
        decrypted=decrypted,
        encrypt_seconds=encrypt_seconds,
        decrypt_seconds=decrypt_seconds,
        events=events,
    )


def generate_many_ciphertexts(
    count: int,
    params: KeyParameters,
    config: Optional[SchemeConfig] = None,
    rng: Optional[random.Random] = None,
) -> list[tuple[int, int]]:
    """Encrypt ``count`` fresh random messages; returns (message, ciphertext) pairs."""
    config = config or default_config(params)
    check_message_bounds(params, config)
    rng = rng or system_random()
    pairs = []
    for _ in range(count):
        message = sample_message(params, config, rng)
        pairs.append((message, encrypt(message, params, config, rng).ciphertext))
    return pairs


def _worker_rng(seed: Optional[int], index: int) -> random.Random:
    if seed is None:
        return system_random()
    return random.Random(f"{seed}-{index}")


def _run_chunk(
    count: int, params: KeyParameters, config: SchemeConfig, rng: random.Random
) -> tuple[StatisticsAggregator, list[TrivialEvent]]:
    aggregator = StatisticsAggregator()
    events = []
    for _ in range(count):
        result = run_trial(params, config, rng)
        aggregator.record(result.outcome())
        events.extend(result.events)
    return aggregator, events


def _split(count: int, workers: int) -> list[int]:
    workers = max(1, min(workers, count))
    base, extra = divmod(count, workers)
    return [base + (1 if i < extra else 0) for i in range(workers)]


def _exhausted_events(
    failures: list[SchemeError], params: KeyParameters, config: SchemeConfig
) -> list[TrivialEvent]:
    events = []
    for exc in failures:
        if isinstance(exc, SearchExhausted) and exc.message is not None:
            events.extend(classify_event(exc.message, r, params, config) for r in exc.rejected)
    return events


async def _store_events(engine: AsyncEngine, run_id: str, events: list[TrivialEvent]) -> None:
    for event in events:
        await record_trivial_event(
            engine,
            run_id=run_id,
            message=event.message,
            z=event.randomness.z,
            w=event.randomness.w,
            group_order=event.group_order,
            record=event.record,
        )


async def run_trials(
    count: int,
    params: KeyParameters,
    config: Optional[SchemeConfig] = None,
    *,
    workers: int = 4,
    seed: Optional[int] = None,
    engine: Optional[AsyncEngine] = None,
    run_id: Optional[str] = None,
) -> TrialReport:
    """Run ``count`` independent trials on worker threads and reduce the results.

    With an engine, the run summary and every classified trivial event are
    stored. The first SchemeError raised by a worker is re-raised here, after
    the rejected randomness it carries has been classified and stored.
    """
    config = config or default_config(params)
    check_message_bounds(params, config)
    if engine is not None:
        await check_db_connection(engine)
    run_id = run_id or str(uuid.uuid4())
    chunks = _split(count, workers) if count > 0 else []
    results: list = [None] * len(chunks)
    failures: list[SchemeError] = []
    limiter = anyio.CapacityLimiter(max(1, workers))

    async def worker(index: int, size: int) -> None:
        try:
            results[index] = await anyio.to_thread.run_sync(
                _run_chunk, size, params, config, _worker_rng(seed, index), limiter=limiter
            )
        except SchemeError as exc:
            failures.append(exc)

    async with anyio.create_task_group() as tg:
        for index, size in enumerate(chunks):
            tg.start_soon(worker, index, size)

    if failures:
        lost = await anyio.to_thread.run_sync(_exhausted_events, failures, params, config)
        logger.warning(
            "run %s aborted: %s (%d trivial events from rejected randomness)",
            run_id,
            failures[0],
            len(lost),
        )
        if engine is not None:
            await _store_events(engine, run_id, lost)
        raise failures[0]

    aggregator = StatisticsAggregator()
    events: list[TrivialEvent] = []
    for chunk_aggregator, chunk_events in results:
        aggregator.merge(chunk_aggregator)
        events.extend(chunk_events)
    summary = aggregator.summary()

    if engine is not None:
        await record_run(
            engine,
            run_id=run_id,
            variant=config.variant.value,
            group_order=config.group_order.value,
            prime_bits=params.bits,
            summary=summary,
        )
        await _store_events(engine, run_id, events)

    logger.info(
        "run %s: %d trials, %d trivial, cases=%s",
        run_id,
        summary.trials,
        summary.trivial,
        summary.case_counts,
    )
    return TrialReport(run_id=run_id, summary=summary, events=events)
