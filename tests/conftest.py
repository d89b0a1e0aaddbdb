"""Shared pytest fixtures for all tests."""

import base64
import io
import secrets

import pytest
from argon2.low_level import Type, hash_secret
from PIL import Image

from fragment_service.fragments import FragmentService
from fragment_service.fragments.adapters import Argon2BasicAuth, MemoryByteStore, MemoryMetadataStore

USERS = {
    "user1@email.com": "password1",
    "user2@email.com": "password2",
}


def argon2_hash(password: str) -> str:
    """Hash a password into an argon2id PHC string with cheap test parameters."""
    return hash_secret(
        secret=password.encode("utf-8"),
        salt=secrets.token_bytes(16),
        time_cost=1,
        memory_cost=1024,
        parallelism=1,
        hash_len=16,
        type=Type.ID,
    ).decode("utf-8")


def basic_auth(username: str, password: str) -> dict[str, str]:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return {"Authorization": f"Basic {token}"}


@pytest.fixture
def metadata_store():
    return MemoryMetadataStore()


@pytest.fixture
def byte_store():
    return MemoryByteStore()


@pytest.fixture
def service(metadata_store, byte_store):
    """FragmentService backed by fresh in-memory stores."""
    return FragmentService(metadata=metadata_store, data=byte_store)


@pytest.fixture(scope="session")
def user_hashes():
    return {email: argon2_hash(pw) for email, pw in USERS.items()}


@pytest.fixture
def security(user_hashes):
    return Argon2BasicAuth(user_hashes)


@pytest.fixture
def png_bytes():
    """A small semi-transparent PNG image."""
    buf = io.BytesIO()
    Image.new("RGBA", (4, 4), (255, 0, 0, 128)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def hash_password():
    return argon2_hash
