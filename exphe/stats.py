import statistics
import threading
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel


@dataclass(frozen=True)
class TrialOutcome:
    trivial: bool
    encrypt_seconds: float
    decrypt_seconds: float
    ciphertext_bits: int
    rejections: int = 0
    roundtrip_ok: bool = True
    cases: tuple[str, ...] = ()  # one label per classified trivial event


class SampleSummary(BaseModel):
    count: int
    mean: float
    std: float
    minimum: float
    maximum: float


class StatisticsSummary(BaseModel):
    trials: int
    trivial: int
    non_trivial: int
    trivial_rate: float
    roundtrip_failures: int
    rejections: int
    case_counts: dict[str, int]
    encrypt_seconds: Optional[SampleSummary]
    decrypt_seconds: Optional[SampleSummary]
    ciphertext_bits: Optional[SampleSummary]
    normalized_bit_length: int


def summarize(values: list) -> Optional[SampleSummary]:
    """Mean and population standard deviation of a sample, None when empty."""
    if not values:
        return None
    return SampleSummary(
        count=len(values),
        mean=statistics.fmean(values),
        std=statistics.pstdev(values),
        minimum=min(values),
        maximum=max(values),
    )


class StatisticsAggregator:
    """Accumulates trial outcomes; safe to share between threads.

    Workers may also keep their own aggregator and ``merge`` them at the end.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.trials = 0
        self.trivial = 0
        self.roundtrip_failures = 0
        self.rejections = 0
        self.case_counts: dict[str, int] = {"case1": 0, "case2": 0, "unknown": 0}
        self.encrypt_times: list[float] = []
        self.decrypt_times: list[float] = []
        self.bit_lengths: list[int] = []

    def record(self, outcome: TrialOutcome) -> None:
        with self._lock:
            self.trials += 1
            if outcome.trivial:
                self.trivial += 1
            if not outcome.roundtrip_ok:
                self.roundtrip_failures += 1
            self.rejections += outcome.rejections
            for label in outcome.cases:
                self.case_counts[label] = self.case_counts.get(label, 0) + 1
            self.encrypt_times.append(outcome.encrypt_seconds)
            self.decrypt_times.append(outcome.decrypt_seconds)
            self.bit_lengths.append(outcome.ciphertext_bits)

    def merge(self, other: "StatisticsAggregator") -> "StatisticsAggregator":
        with other._lock:
            snapshot = (
                other.trials,
                other.trivial,
                other.roundtrip_failures,
                other.rejections,
                dict(other.case_counts),
                list(other.encrypt_times),
                list(other.decrypt_times),
                list(other.bit_lengths),
            )
        trials, trivial, failures, rejections, cases, enc, dec, bits = snapshot
        with self._lock:
            self.trials += trials
            self.trivial += trivial
            self.roundtrip_failures += failures
            self.rejections += rejections
            for label, count in cases.items():
                self.case_counts[label] = self.case_counts.get(label, 0) + count
            self.encrypt_times.extend(enc)
            self.decrypt_times.extend(dec)
            self.bit_lengths.extend(bits)
        return self

    def summary(self) -> StatisticsSummary:
        with self._lock:
            return StatisticsSummary(
                trials=self.trials,
                trivial=self.trivial,
                non_trivial=self.trials - self.trivial,
                trivial_rate=self.trivial / self.trials if self.trials else 0.0,
                roundtrip_failures=self.roundtrip_failures,
                rejections=self.rejections,
                case_counts=dict(self.case_counts),
                encrypt_seconds=summarize(self.encrypt_times),
                decrypt_seconds=summarize(self.decrypt_times),
                ciphertext_bits=summarize(self.bit_lengths),
                normalized_bit_length=max(self.bit_lengths, default=0),
            )
