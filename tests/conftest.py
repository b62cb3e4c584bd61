"""
Shared fixtures for VRroom tests.

Every test gets a fresh in-memory store, an in-memory blob store and
cheap Argon2 parameters.
"""

import pytest

from backend.vrroom_server.blob.memory import InMemoryBlobStore
from backend.vrroom_server.config import (
    AuthConfig,
    BlobBackend,
    PasswordConfig,
    ServerConfig,
    StorageConfig,
)
from backend.vrroom_server.services import Services
from backend.vrroom_server.store.database import Store

PASSWORD = "correct-horse-battery"


@pytest.fixture
def config():
    """Test configuration with a fixed secret and fast hashing."""
    return ServerConfig(
        blob_backend=BlobBackend.MEMORY,
        storage=StorageConfig(database_path=":memory:", wal_mode=False),
        auth=AuthConfig(secret="test-secret-0123456789abcdef"),
        passwords=PasswordConfig(time_cost=1, memory_cost_kib=8, parallelism=1),
    )


@pytest.fixture
def store():
    """In-memory store."""
    store = Store(":memory:", wal_mode=False)
    yield store
    store.close()


@pytest.fixture
def blobs():
    """Connected in-memory blob store."""
    return InMemoryBlobStore(connected=True)


@pytest.fixture
def services(config, store, blobs):
    """Full engine graph over the in-memory store and blob store."""
    return Services.build(config, store=store, blobs=blobs)


@pytest.fixture
def make_user(services):
    """Factory registering an account; returns the Account."""

    async def make(handle: str, password: str = PASSWORD):
        return await services.accounts.register(handle, f"{handle}@example.com", password)

    return make


@pytest.fixture
def login(services):
    """Factory logging in by handle; returns the LoginResult."""

    async def do_login(handle: str, password: str = PASSWORD, device_info: str = "tests"):
        return await services.accounts.login(handle, password, device_info)

    return do_login
