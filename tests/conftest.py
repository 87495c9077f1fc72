"""Shared pytest fixtures for the exphe test suite."""

import random

import pytest

from exphe.crypto.keys import KeyParameters
from exphe.db import get_engine, init_db, reset_db

TOY_P = 1009
TOY_Q = 1013


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def toy_params() -> KeyParameters:
    """p = 1009, q = 1013: small enough to reason about by hand."""
    return KeyParameters.from_primes(TOY_P, TOY_Q)


@pytest.fixture()
def rng() -> random.Random:
    return random.Random(20240601)


@pytest.fixture()
async def engine(tmp_path):
    """Provide a ready-to-use async engine on a throwaway SQLite file."""
    eng = get_engine(f"sqlite+aiosqlite:///{tmp_path / 'trials.db'}")
    await init_db(eng)
    await reset_db(eng)
    return eng
