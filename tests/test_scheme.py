import math

import pytest

from exphe.config import GroupOrder, SchemeConfig, Variant
from exphe.crypto.keys import generate_key_parameters
from exphe.crypto.numtheory import is_probable_prime
from exphe.crypto.scheme import (
    check_message_bounds,
    decrypt,
    default_config,
    encrypt,
    encrypt_with,
    sample_message,
    search_auxiliary_modulus,
)
from exphe.errors import ConfigurationError, SearchExhausted


@pytest.fixture()
def params(rng):
    return generate_key_parameters(64, rng=rng)


def test_decrypt_is_centered_remainder(toy_params):
    p = toy_params.p
    assert decrypt(5, toy_params) == 5
    assert decrypt(p - 3, toy_params) == -3
    assert decrypt(5 + 7 * p, toy_params) == 5
    assert decrypt(504, toy_params) == 504
    assert decrypt(505, toy_params) == -504


def test_validated_roundtrip_and_range(params, rng):
    config = SchemeConfig(prime_bits=64, message_bits=16, z_bits=64)
    for _ in range(20):
        message = sample_message(params, config, rng)
        enc = encrypt(message, params, config, rng)
        assert enc.variant is Variant.VALIDATED
        assert is_probable_prime(enc.randomness.z)
        assert enc.randomness.modulus == params.p * enc.randomness.z
        assert enc.randomness.ek % params.lambda_n == 0
        assert 0 <= enc.ciphertext < enc.randomness.modulus
        assert decrypt(enc.ciphertext, params) == message


def test_relaxed_roundtrip_and_range(params, rng):
    config = SchemeConfig(prime_bits=64, message_bits=32, z_bits=48, variant=Variant.RELAXED)
    for _ in range(20):
        message = sample_message(params, config, rng)
        enc = encrypt(message, params, config, rng)
        assert enc.randomness.z % 2 == 1 and enc.randomness.z >= 3
        assert enc.randomness.modulus == params.n * enc.randomness.z
        assert 0 <= enc.ciphertext < enc.randomness.modulus
        assert not enc.trivial
        assert decrypt(enc.ciphertext, params) == message


def test_baseline_roundtrip_with_phi(toy_params, rng):
    config = SchemeConfig(
        prime_bits=10,
        message_range=(-250, 250),
        variant=Variant.BASELINE,
        group_order=GroupOrder.PHI,
    )
    for _ in range(50):
        message = sample_message(toy_params, config, rng)
        enc = encrypt(message, toy_params, config, rng)
        assert 10 <= enc.randomness.z <= 1000
        assert 50 <= enc.randomness.w <= 5000
        assert enc.randomness.ek == enc.randomness.w * toy_params.phi_n
        assert 0 <= enc.ciphertext < enc.randomness.modulus
        assert decrypt(enc.ciphertext, toy_params) == message


def test_negative_message_roundtrip(params, rng):
    config = SchemeConfig(prime_bits=64, message_bits=20, z_bits=64)
    enc = encrypt(-12345, params, config, rng)
    assert enc.ciphertext >= 0
    assert decrypt(enc.ciphertext, params) == -12345


def test_coprime_collision_yields_trivial_ciphertext(toy_params):
    # ord_11(7) = 10 divides 5 * phi(n)
    enc = encrypt_with(7, toy_params, w=5, z=11, group_order=GroupOrder.PHI)
    assert enc.randomness.modulus == 1009 * 11
    assert enc.ciphertext == 7
    assert enc.trivial


def test_shared_factor_collision_yields_trivial_ciphertext(toy_params):
    enc = encrypt_with(9, toy_params, w=1, z=15, group_order=GroupOrder.PHI)
    assert enc.ciphertext == 9
    assert decrypt(enc.ciphertext, toy_params) == 9


@pytest.mark.parametrize("message", [-1, 0, 1, 505, -505, 10**6])
def test_encrypt_rejects_messages_out_of_range(toy_params, message):
    with pytest.raises(ValueError):
        encrypt(message, toy_params)


def test_sample_message_bounds(params, rng):
    config = SchemeConfig(prime_bits=64, message_bits=8)
    for _ in range(200):
        m = sample_message(params, config, rng)
        assert abs(m) > 1
        assert abs(m) < 2**8


def test_sample_message_rejects_oversized_messages(params, rng):
    with pytest.raises(ConfigurationError):
        sample_message(params, SchemeConfig(prime_bits=64, message_bits=63), rng)


def test_message_size_is_checked_against_the_key(params, rng):
    # prime_bits stays at 512 while the key is 64 bits: every draw must fail
    config = SchemeConfig(message_bits=63)
    for _ in range(50):
        with pytest.raises(ConfigurationError):
            sample_message(params, config, rng)

    check_message_bounds(params, SchemeConfig(message_range=(-params.p_half, params.p_half)))
    with pytest.raises(ConfigurationError):
        check_message_bounds(params, SchemeConfig(message_range=(2, params.p_half + 1)))


def test_probe_search_exhaustion(toy_params, rng):
    # z is 5 or 7: gcd(5, 5) > 1 and ord_7(5) = 6 divides lambda(n)
    config = SchemeConfig(prime_bits=10, message_range=(5, 5), z_bits=3, max_attempts=10)
    assert search_auxiliary_modulus(toy_params, toy_params.lambda_n, config, rng) is None
    with pytest.raises(SearchExhausted) as info:
        encrypt(5, toy_params, config, rng)
    assert info.value.attempts == 10


def test_relaxed_exhaustion_keeps_rejected_randomness(toy_params, rng):
    # every odd z below 8 divides 105, so the collision cannot be avoided
    config = SchemeConfig(prime_bits=10, message_range=(105, 105), z_bits=3, variant=Variant.RELAXED, max_attempts=5)
    with pytest.raises(SearchExhausted) as info:
        encrypt(105, toy_params, config, rng)
    assert info.value.attempts == 5
    assert len(info.value.rejected) == 5
    assert all(105 % r.z == 0 for r in info.value.rejected)


def test_fresh_randomness_per_encryption(params, rng):
    config = SchemeConfig(prime_bits=64, message_bits=16, z_bits=64)
    first = encrypt(1234, params, config, rng)
    second = encrypt(1234, params, config, rng)
    assert first.randomness != second.randomness
    assert first.ciphertext != second.ciphertext
    assert math.gcd(first.randomness.z, second.randomness.z) == 1


def test_default_config_fits_small_primes(toy_params):
    config = default_config(toy_params)
    assert config.prime_bits == 10
    assert config.message_bits == 8
    config.check_bounds()
