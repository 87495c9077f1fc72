import logging
import math
import random
import secrets
from typing import Optional

from exphe.errors import FactorizationTimeout, OrderComputationTimeout

logger = logging.getLogger(__name__)

SMALL_PRIMES = [2, 3, 5, 7, 11, 13, 17, 19, 23, 29, 31, 37, 41, 43, 47]

_SYSTEM_RANDOM = secrets.SystemRandom()


def system_random() -> random.Random:
    """Shared CSPRNG used whenever the caller does not inject a source."""
    return _SYSTEM_RANDOM


def lcm(a: int, b: int) -> int:
    return abs(a * b) // math.gcd(a, b)


def is_probable_prime(n: int, rounds: int = 40, rng: Optional[random.Random] = None) -> bool:
    """Miller-Rabin with random witnesses; error probability <= 4**-rounds."""
    if n < 2:
        return False
    if n in SMALL_PRIMES:
        return True
    if any((n % p) == 0 for p in SMALL_PRIMES):
        return False

    rng = rng or _SYSTEM_RANDOM
    d = n - 1
    s = 0
    while d % 2 == 0:
        d //= 2
        s += 1

    for _ in range(rounds):
        a = rng.randrange(2, n - 1)
        x = pow(a, d, n)
        if x == 1 or x == n - 1:
            continue
        for _ in range(s - 1):
            x = pow(x, 2, n)
            if x == n - 1:
                break
        else:
            return False
    return True


def generate_probable_prime(bits: int, rng: Optional[random.Random] = None) -> int:
    """Random prime with exactly ``bits`` bits."""
    if bits < 2:
        raise ValueError("a prime needs at least 2 bits")
    rng = rng or _SYSTEM_RANDOM
    if bits == 2:
        return rng.choice([2, 3])
    while True:
        candidate = rng.getrandbits(bits) | 1 | (1 << (bits - 1))
        if is_probable_prime(candidate, rng=rng):
            return candidate


def multiplicative_order(base: int, modulus: int, max_iterations: int = 100_000) -> int:
    """Smallest k > 0 with base**k == 1 (mod modulus), by bounded stepping.

    Raises ValueError when base is not a unit mod modulus and
    OrderComputationTimeout when no k <= max_iterations exists.
    """
    if modulus < 1:
        raise ValueError("modulus must be positive")
    if modulus == 1:
        return 1
    base %= modulus
    if math.gcd(base, modulus) != 1:
        raise ValueError(f"{base} is not invertible mod {modulus}")

    order = 1
    current = base
    while current != 1:
        if order >= max_iterations:
            raise OrderComputationTimeout(base, modulus, max_iterations)
        current = (current * base) % modulus
        order += 1
    return order


def factorize(n: int, max_iterations: int = 1_000_000) -> dict[int, int]:
    """Prime-power decomposition {prime: exponent} of |n|, primes ascending.

    Trial division by 2 and odd candidates; the search stops early once the
    remaining cofactor is a probable prime.
    """
    n = abs(n)
    if n == 0:
        raise ValueError("cannot factor 0")
    factors: dict[int, int] = {}
    remaining = n

    while remaining % 2 == 0:
        factors[2] = factors.get(2, 0) + 1
        remaining //= 2

    divisor = 3
    iterations = 0
    cofactor_is_prime = is_probable_prime(remaining)
    while remaining > 1 and not cofactor_is_prime and divisor * divisor <= remaining:
        if iterations >= max_iterations:
            logger.warning("factorization of %d gave up at divisor %d", n, divisor)
            raise FactorizationTimeout(n, max_iterations)
        if remaining % divisor == 0:
            while remaining % divisor == 0:
                factors[divisor] = factors.get(divisor, 0) + 1
                remaining //= divisor
            cofactor_is_prime = is_probable_prime(remaining)
        divisor += 2
        iterations += 1

    if remaining > 1:
        factors[remaining] = factors.get(remaining, 0) + 1
    return dict(sorted(factors.items()))
