"""
Configuration scalars for key generation, encryption and trial runs.
Defaults can be overridden from EXPHE_* environment variables.
"""

import logging
import os
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from exphe.errors import ConfigurationError


# ── Scheme variants ────────────────────────────────
class Variant(str, Enum):
    VALIDATED = "validated"  # prime z, probe-checked, modulus p*z
    RELAXED = "relaxed"  # odd z, reject observed collisions, modulus n*z
    BASELINE = "baseline"  # z and w from ranges, single shot, modulus n*z


class GroupOrder(str, Enum):
    LAMBDA = "lambda"
    PHI = "phi"


# ── Models ─────────────────────────────────────────
class SchemeConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    prime_bits: int = Field(default=512, ge=8)
    message_bits: int = Field(default=64, ge=2)
    message_range: Optional[tuple[int, int]] = None
    z_bits: int = Field(default=512, ge=3)
    w_bits: int = Field(default=32, ge=1)
    variant: Variant = Variant.VALIDATED
    group_order: GroupOrder = GroupOrder.LAMBDA
    probe_count: int = Field(default=5, ge=1)
    max_attempts: int = Field(default=100, ge=1)
    max_order_iterations: int = Field(default=100_000, ge=1)
    max_factor_iterations: int = Field(default=1_000_000, ge=1)
    z_range: tuple[int, int] = (10, 1000)
    w_range: tuple[int, int] = (50, 5000)

    @field_validator("message_range", "z_range", "w_range")
    @classmethod
    def _ordered(cls, value):
        if value is not None and value[0] > value[1]:
            raise ValueError("range lower bound exceeds upper bound")
        return value

    @field_validator("z_range", "w_range")
    @classmethod
    def _positive(cls, value):
        if value[0] < 2:
            raise ValueError("range must start at 2 or above")
        return value

    def check_bounds(self) -> None:
        """Raise ConfigurationError if messages may not fit under p/2.

        Primes have exactly ``prime_bits`` bits, so p/2 >= 2**(prime_bits - 2).
        """
        limit = 1 << (self.prime_bits - 2)
        if self.message_range is not None:
            lo, hi = self.message_range
            if max(abs(lo), abs(hi)) >= limit:
                raise ConfigurationError(
                    f"message range {self.message_range} exceeds p/2 for {self.prime_bits}-bit primes"
                )
            if lo >= -1 and hi <= 1:
                raise ConfigurationError("message range holds no value outside {-1, 0, 1}")
            return
        if self.message_bits > self.prime_bits - 2:
            raise ConfigurationError(
                f"message size {self.message_bits} bits too large for {self.prime_bits}-bit primes; "
                "reduce message_bits"
            )


# ── Environment ────────────────────────────────────
def _env_range(name: str, default: Optional[tuple[int, int]]) -> Optional[tuple[int, int]]:
    raw = os.getenv(name)
    if not raw:
        return default
    lo, hi = raw.split(",", 1)
    return int(lo), int(hi)


def settings_from_env() -> SchemeConfig:
    """Build a SchemeConfig from EXPHE_* variables, falling back to defaults."""
    config = SchemeConfig(
        prime_bits=int(os.getenv("EXPHE_PRIME_BITS", "512")),
        message_bits=int(os.getenv("EXPHE_MESSAGE_BITS", "64")),
        message_range=_env_range("EXPHE_MESSAGE_RANGE", None),
        z_bits=int(os.getenv("EXPHE_Z_BITS", "512")),
        w_bits=int(os.getenv("EXPHE_W_BITS", "32")),
        variant=Variant(os.getenv("EXPHE_VARIANT", Variant.VALIDATED.value)),
        group_order=GroupOrder(os.getenv("EXPHE_GROUP_ORDER", GroupOrder.LAMBDA.value)),
        probe_count=int(os.getenv("EXPHE_PROBE_COUNT", "5")),
        max_attempts=int(os.getenv("EXPHE_MAX_ATTEMPTS", "100")),
        max_order_iterations=int(os.getenv("EXPHE_MAX_ORDER_ITERATIONS", "100000")),
        max_factor_iterations=int(os.getenv("EXPHE_MAX_FACTOR_ITERATIONS", "1000000")),
        z_range=_env_range("EXPHE_Z_RANGE", (10, 1000)),
        w_range=_env_range("EXPHE_W_RANGE", (50, 5000)),
    )
    config.check_bounds()
    return config


LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """Attach a stream handler to the ``exphe`` logger (idempotent)."""
    logger = logging.getLogger("exphe")
    logger.setLevel((level or os.getenv("EXPHE_LOG_LEVEL", "INFO")).upper())
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger
