"""
Diagnosis of trivial ciphertexts (M^(ek+1) mod pk == M).

Case 1: gcd(M, z) = 1 and ord_z(M) divides ek, so M^ek = 1 (mod z).
Case 2: gcd(M, z) > 1 and every prime r of z allows the collision: either
        r^b | M with b its exponent in z (both sides are 0 mod r^b), or r
        does not divide M and ord_r(M) divides ek.
Anything else is reported as Unknown with the reason.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from exphe.crypto.numtheory import factorize, multiplicative_order
from exphe.errors import FactorizationTimeout, OrderComputationTimeout

logger = logging.getLogger(__name__)

DEFAULT_MAX_ORDER_ITERATIONS = 100_000
DEFAULT_MAX_FACTOR_ITERATIONS = 1_000_000


class UnknownReason(str, Enum):
    COPRIME_ORDER_NOT_DIVIDES = "coprime_order_not_divides"
    ORDER_COMPUTATION_FAILED = "order_computation_failed"
    NOT_ALL_PRIMES_ALLOW_FAILURE = "not_all_primes_allow_failure"
    FACTORIZATION_FAILED = "factorization_failed"


@dataclass(frozen=True)
class PrimeEvidence:
    prime: int
    z_exponent: int
    m_exponent: int
    order: Optional[int]
    allows_failure: bool

    @property
    def shared(self) -> bool:
        return self.m_exponent > 0


@dataclass(frozen=True)
class Case1:
    order: int
    quotient: int

    label = "case1"


@dataclass(frozen=True)
class Case2:
    gcd: int
    primes: tuple[PrimeEvidence, ...]

    label = "case2"


@dataclass(frozen=True)
class Unknown:
    reason: UnknownReason
    gcd: int
    primes: tuple[PrimeEvidence, ...] = ()

    label = "unknown"


Classification = Union[Case1, Case2, Unknown]


def classify_trivial_case(
    message: int,
    z: int,
    w: int,
    group_order: int,
    *,
    max_order_iterations: int = DEFAULT_MAX_ORDER_ITERATIONS,
    max_factor_iterations: int = DEFAULT_MAX_FACTOR_ITERATIONS,
) -> Classification:
    """Explain why M^(w*group_order + 1) collapsed to M modulo a multiple of z."""
    if abs(message) <= 1:
        raise ValueError("message must not be -1, 0 or 1")
    if z < 2:
        raise ValueError("auxiliary modulus must be at least 2")

    g = math.gcd(message, z)
    ek = w * group_order

    if g == 1:
        try:
            order = multiplicative_order(message, z, max_order_iterations)
        except OrderComputationTimeout:
            logger.warning("order of %d mod %d exceeded %d iterations", message, z, max_order_iterations)
            return Unknown(UnknownReason.ORDER_COMPUTATION_FAILED, g)
        if ek % order == 0:
            return Case1(order=order, quotient=ek // order)
        return Unknown(UnknownReason.COPRIME_ORDER_NOT_DIVIDES, g)

    try:
        m_factors = factorize(message, max_factor_iterations)
        z_factors = factorize(z, max_factor_iterations)
    except FactorizationTimeout:
        return Unknown(UnknownReason.FACTORIZATION_FAILED, g)

    primes = []
    order_failed = False
    for prime, b in z_factors.items():
        a = m_factors.get(prime, 0)
        if a:
            primes.append(PrimeEvidence(prime, b, a, None, a >= b))
            continue
        try:
            order = multiplicative_order(message, prime, max_order_iterations)
        except OrderComputationTimeout:
            order_failed = True
            primes.append(PrimeEvidence(prime, b, 0, None, False))
            continue
        primes.append(PrimeEvidence(prime, b, 0, order, ek % order == 0))

    evidence = tuple(primes)
    if order_failed:
        return Unknown(UnknownReason.ORDER_COMPUTATION_FAILED, g, evidence)
    if all(e.allows_failure for e in evidence):
        return Case2(gcd=g, primes=evidence)
    return Unknown(UnknownReason.NOT_ALL_PRIMES_ALLOW_FAILURE, g, evidence)


def verify_classification(record: Classification, message: int, z: int, w: int, group_order: int) -> bool:
    """Recompute the sufficient condition a Case 1 / Case 2 record claims.

    Unknown records claim nothing and always verify.
    """
    ek = w * group_order
    if isinstance(record, Case1):
        return (
            math.gcd(message, z) == 1
            and pow(message % z, record.order, z) == 1 % z
            and ek == record.order * record.quotient
        )
    if isinstance(record, Case2):
        if math.gcd(message, z) != record.gcd or record.gcd == 1:
            return False
        product = 1
        for e in record.primes:
            product *= e.prime ** e.z_exponent
            if e.shared:
                if message % (e.prime ** e.z_exponent) != 0:
                    return False
            elif e.order is None or pow(message % e.prime, e.order, e.prime) != 1 or ek % e.order != 0:
                return False
        return product == z
    return True


def classification_details(record: Classification) -> dict:
    """Flat, JSON-friendly view of a record (big integers as strings)."""
    details: dict = {"case": record.label}
    if isinstance(record, Case1):
        details.update(order=str(record.order), quotient=str(record.quotient))
        return details
    if isinstance(record, Unknown):
        details["reason"] = record.reason.value
    details["gcd"] = str(record.gcd)
    details["primes"] = [
        {
            "prime": str(e.prime),
            "z_exponent": e.z_exponent,
            "m_exponent": e.m_exponent,
            "order": None if e.order is None else str(e.order),
            "allows_failure": e.allows_failure,
        }
        for e in record.primes
    ]
    return details
