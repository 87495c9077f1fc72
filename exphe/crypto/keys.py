import logging
import random
from dataclasses import dataclass
from typing import Optional

from exphe.config import GroupOrder
from exphe.crypto.numtheory import generate_probable_prime, is_probable_prime, lcm, system_random
from exphe.errors import ConfigurationError

logger = logging.getLogger(__name__)

MIN_PRIME_BITS = 8


@dataclass(frozen=True)
class KeyParameters:
    """Fixed key material shared read-only by every encryption of a run."""

    p: int
    q: int
    n: int
    lambda_n: int
    phi_n: int

    @property
    def p_half(self) -> int:
        return self.p >> 1

    @property
    def bits(self) -> int:
        return self.p.bit_length()

    @property
    def lambda_phi_ratio(self) -> float:
        return self.lambda_n / self.phi_n

    def group_order(self, kind: GroupOrder) -> int:
        if GroupOrder(kind) is GroupOrder.PHI:
            return self.phi_n
        return self.lambda_n

    @classmethod
    def from_primes(cls, p: int, q: int) -> "KeyParameters":
        if p == q:
            raise ValueError("p and q must be distinct")
        if not (is_probable_prime(p) and is_probable_prime(q)):
            raise ValueError("p and q must be prime")
        return cls(
            p=p,
            q=q,
            n=p * q,
            lambda_n=lcm(p - 1, q - 1),
            phi_n=(p - 1) * (q - 1),
        )


def generate_key_parameters(bits: int = 512, rng: Optional[random.Random] = None) -> KeyParameters:
    """Sample two distinct ``bits``-bit probable primes and derive n, λ(n), φ(n)."""
    if bits < MIN_PRIME_BITS:
        raise ConfigurationError(f"prime size must be at least {MIN_PRIME_BITS} bits, got {bits}")
    rng = rng or system_random()
    p = generate_probable_prime(bits, rng)
    q = generate_probable_prime(bits, rng)
    while q == p:
        q = generate_probable_prime(bits, rng)

    params = KeyParameters.from_primes(p, q)
    logger.info(
        "generated %d-bit key parameters: n=%d bits, lambda=%d bits, lambda/phi=%.4f",
        bits,
        params.n.bit_length(),
        params.lambda_n.bit_length(),
        params.lambda_phi_ratio,
    )
    return params
