"""Shared fixtures for the worker tests."""

import pytest

from tests.fakes import FakeClock, FakePlatform, MemoryStore, make_gateway


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def gateway(store):
    return make_gateway(store)


@pytest.fixture
def platform():
    return FakePlatform()
