"""
Pytest fixtures for comfylink tests.
"""

from __future__ import annotations

import pytest

from comfylink.identity import MemoryIdentityStore
from comfylink.session import SessionStore

from .fakes import TransportFactory


@pytest.fixture
def identity_store() -> MemoryIdentityStore:
    return MemoryIdentityStore()


@pytest.fixture
def factory() -> TransportFactory:
    return TransportFactory()


@pytest.fixture
def store(identity_store: MemoryIdentityStore, factory: TransportFactory) -> SessionStore:
    return SessionStore(identity_store=identity_store, transport_factory=factory)
