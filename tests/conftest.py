import logging

import pytest

from aggregation import ManualClock, derive_collection_id
from client_tools import generate_keypair, keypair_from_primes

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


@pytest.fixture(scope="session")
def keys():
    """512-bit client key pair, shared across the run"""
    return generate_keypair(512)


@pytest.fixture(scope="session")
def toy_keys():
    """n = 61 * 53, small enough to hit non-invertible constants on purpose"""
    return keypair_from_primes(61, 53)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def room_id():
    return derive_collection_id("room-1")


@pytest.fixture
def group_id():
    return derive_collection_id("group-1")


@pytest.fixture(scope="session")
def other_keys():
    """An unrelated 512-bit key pair"""
    return generate_keypair(512)
