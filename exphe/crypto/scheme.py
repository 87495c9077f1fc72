"""
Encryption and decryption engines.

    C = M^(ek+1) mod (p*z)    ek = w * λ(n)

w and z are drawn fresh for every message. Since (p-1) divides ek,
C = M (mod p) and the message is recovered as the centered remainder of
C mod p, whatever z and w were.
"""

import logging
import math
import random
from dataclasses import dataclass
from typing import Optional

from exphe.config import GroupOrder, SchemeConfig, Variant
from exphe.crypto.keys import KeyParameters
from exphe.crypto.numtheory import generate_probable_prime, system_random
from exphe.errors import ConfigurationError, SearchExhausted

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncryptionRandomness:
    w: int
    z: int
    ek: int
    modulus: int


@dataclass(frozen=True)
class Encryption:
    message: int
    ciphertext: int
    randomness: EncryptionRandomness
    variant: Variant
    attempts: int = 1
    rejected: tuple[EncryptionRandomness, ...] = ()

    @property
    def trivial(self) -> bool:
        return self.ciphertext == self.message

    @property
    def rejections(self) -> int:
        return len(self.rejected)

    @property
    def bit_length(self) -> int:
        return self.ciphertext.bit_length()


@dataclass(frozen=True)
class ModulusSearch:
    z: int
    attempts: int


def default_config(params: KeyParameters) -> SchemeConfig:
    return SchemeConfig(prime_bits=params.bits, message_bits=min(64, params.bits - 2))


def check_message(message: int, params: KeyParameters) -> None:
    if abs(message) <= 1:
        raise ValueError("message must not be -1, 0 or 1")
    if 2 * abs(message) >= params.p:
        raise ValueError("message out of range")


def check_message_bounds(params: KeyParameters, config: SchemeConfig) -> None:
    """Raise ConfigurationError unless every message the config can draw fits under p/2."""
    config.check_bounds()
    if config.message_range is not None:
        lo, hi = config.message_range
        if max(abs(lo), abs(hi)) > params.p_half:
            raise ConfigurationError(
                f"message range {config.message_range} exceeds p/2 for a {params.bits}-bit p"
            )
    elif config.message_bits > params.bits - 2:
        raise ConfigurationError(
            f"message size {config.message_bits} bits too large for a {params.bits}-bit p; "
            "reduce message_bits"
        )


def sample_message(params: KeyParameters, config: SchemeConfig, rng: Optional[random.Random] = None) -> int:
    """Draw a signed message outside {-1, 0, 1} with |M| < p/2."""
    check_message_bounds(params, config)
    rng = rng or system_random()
    while True:
        if config.message_range is not None:
            message = rng.randint(*config.message_range)
        else:
            message = rng.getrandbits(config.message_bits)
            if rng.getrandbits(1):
                message = -message
        if abs(message) > 1:
            return message


def working_modulus(params: KeyParameters, z: int, variant: Variant) -> int:
    if Variant(variant) is Variant.VALIDATED:
        return params.p * z
    return params.n * z


def make_randomness(
    params: KeyParameters,
    *,
    w: int,
    z: int,
    variant: Variant = Variant.VALIDATED,
    group_order: GroupOrder = GroupOrder.LAMBDA,
) -> EncryptionRandomness:
    ek = w * params.group_order(group_order)
    return EncryptionRandomness(w=w, z=z, ek=ek, modulus=working_modulus(params, z, variant))


def raise_to_blinded_power(message: int, randomness: EncryptionRandomness) -> int:
    # reduce first so negative messages land in [0, modulus)
    modulus = randomness.modulus
    return pow(message % modulus, randomness.ek + 1, modulus)


def encrypt_with(
    message: int,
    params: KeyParameters,
    *,
    w: int,
    z: int,
    variant: Variant = Variant.VALIDATED,
    group_order: GroupOrder = GroupOrder.LAMBDA,
) -> Encryption:
    """Encrypt under caller-chosen randomness; no search, no rejection."""
    check_message(message, params)
    randomness = make_randomness(params, w=w, z=z, variant=variant, group_order=group_order)
    return Encryption(
        message=message,
        ciphertext=raise_to_blinded_power(message, randomness),
        randomness=randomness,
        variant=Variant(variant),
    )


def _sample_w(config: SchemeConfig, rng: random.Random) -> int:
    return rng.getrandbits(config.w_bits) + 1


def _probe_passes(probe: int, z: int, modulus: int, exponent: int) -> bool:
    if math.gcd(probe, z) != 1:
        return False
    return pow(probe % modulus, exponent, modulus) != probe


def search_auxiliary_modulus(
    params: KeyParameters,
    ek: int,
    config: SchemeConfig,
    rng: Optional[random.Random] = None,
) -> Optional[ModulusSearch]:
    """Draw prime z candidates until one randomizes every probe message.

    Returns None once ``config.max_attempts`` candidates were rejected.
    """
    rng = rng or system_random()
    exponent = ek + 1
    for attempt in range(1, config.max_attempts + 1):
        z = generate_probable_prime(config.z_bits, rng)
        modulus = params.p * z
        if all(
            _probe_passes(sample_message(params, config, rng), z, modulus, exponent)
            for _ in range(config.probe_count)
        ):
            return ModulusSearch(z=z, attempts=attempt)
        logger.debug("auxiliary modulus candidate %d/%d rejected", attempt, config.max_attempts)
    return None


def _encrypt_validated(message, params, config, rng) -> Encryption:
    w = _sample_w(config, rng)
    ek = w * params.group_order(config.group_order)
    search = search_auxiliary_modulus(params, ek, config, rng)
    if search is None:
        logger.warning("no valid auxiliary modulus after %d attempts", config.max_attempts)
        raise SearchExhausted("a valid auxiliary modulus", config.max_attempts)

    randomness = EncryptionRandomness(w=w, z=search.z, ek=ek, modulus=params.p * search.z)
    return Encryption(
        message=message,
        ciphertext=raise_to_blinded_power(message, randomness),
        randomness=randomness,
        variant=Variant.VALIDATED,
        attempts=search.attempts,
    )


def _encrypt_relaxed(message, params, config, rng) -> Encryption:
    rejected = []
    for attempt in range(1, config.max_attempts + 1):
        z = rng.getrandbits(config.z_bits) | 1
        if z < 3:
            z += 2
        randomness = make_randomness(
            params,
            w=_sample_w(config, rng),
            z=z,
            variant=Variant.RELAXED,
            group_order=config.group_order,
        )
        ciphertext = raise_to_blinded_power(message, randomness)
        if ciphertext != message:
            return Encryption(
                message=message,
                ciphertext=ciphertext,
                randomness=randomness,
                variant=Variant.RELAXED,
                attempts=attempt,
                rejected=tuple(rejected),
            )
        rejected.append(randomness)
        logger.debug("trivial ciphertext for M=%d with z=%d, resampling", message, z)

    logger.warning("message %d stayed trivial for %d attempts", message, config.max_attempts)
    raise SearchExhausted("a non-trivial ciphertext", config.max_attempts, tuple(rejected), message)


def _encrypt_baseline(message, params, config, rng) -> Encryption:
    randomness = make_randomness(
        params,
        w=rng.randint(*config.w_range),
        z=rng.randint(*config.z_range),
        variant=Variant.BASELINE,
        group_order=config.group_order,
    )
    return Encryption(
        message=message,
        ciphertext=raise_to_blinded_power(message, randomness),
        randomness=randomness,
        variant=Variant.BASELINE,
    )


_ENGINES = {
    Variant.VALIDATED: _encrypt_validated,
    Variant.RELAXED: _encrypt_relaxed,
    Variant.BASELINE: _encrypt_baseline,
}


def encrypt(
    message: int,
    params: KeyParameters,
    config: Optional[SchemeConfig] = None,
    rng: Optional[random.Random] = None,
) -> Encryption:
    check_message(message, params)
    config = config or default_config(params)
    return _ENGINES[config.variant](message, params, config, rng or system_random())


def decrypt(ciphertext: int, params: KeyParameters) -> int:
    """Centered remainder of C mod p, in (-p/2, p/2)."""
    r = ciphertext % params.p
    if 2 * r < params.p:
        return r
    return r - params.p
