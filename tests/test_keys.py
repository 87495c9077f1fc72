import dataclasses
import math
import random

import pytest

from exphe.config import GroupOrder
from exphe.crypto.keys import KeyParameters, generate_key_parameters
from exphe.crypto.numtheory import is_probable_prime
from exphe.errors import ConfigurationError


def test_generate_key_parameters():
    params = generate_key_parameters(64, rng=random.Random(11))
    assert params.p != params.q
    assert params.p.bit_length() == params.q.bit_length() == 64
    assert is_probable_prime(params.p) and is_probable_prime(params.q)
    assert params.n == params.p * params.q
    assert params.phi_n == (params.p - 1) * (params.q - 1)
    assert params.lambda_n * math.gcd(params.p - 1, params.q - 1) == params.phi_n
    assert params.phi_n % params.lambda_n == 0
    assert 0 < params.lambda_phi_ratio <= 0.5


def test_prime_size_floor():
    with pytest.raises(ConfigurationError):
        generate_key_parameters(4)


def test_toy_parameters(toy_params):
    assert toy_params.n == 1009 * 1013
    assert toy_params.phi_n == 1020096
    assert toy_params.lambda_n == 255024
    assert toy_params.p_half == 504
    assert toy_params.bits == 10
    assert toy_params.group_order(GroupOrder.PHI) == 1020096
    assert toy_params.group_order("lambda") == 255024


def test_from_primes_validates():
    with pytest.raises(ValueError):
        KeyParameters.from_primes(1009, 1009)
    with pytest.raises(ValueError):
        KeyParameters.from_primes(1009, 1011)


def test_parameters_are_immutable(toy_params):
    with pytest.raises(dataclasses.FrozenInstanceError):
        toy_params.p = 7
