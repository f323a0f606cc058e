import asyncio

import pytest
from fastapi.testclient import TestClient

from khm.client.api import KhmApiClient
from khm.core.config import Settings
from khm.main import create_app
from khm.models.base import Database
from khm.models.migrate import run_migrations
from khm.schemas import SshKeyEntry
from khm.services.reconciliation import ReconciliationService
from khm.services.snapshot import load_flows


def ssh_key(tag: str, algorithm: str = "ssh-ed25519") -> str:
    """A syntactically valid public key, distinct per ``tag``."""
    prefix = {
        "ssh-ed25519": "AAAAC3NzaC1lZDI1NTE5AAAAI",
        "ssh-rsa": "AAAAB3NzaC1yc2EAAAADAQABAAABAQ",
    }[algorithm]
    return f"{algorithm} {prefix}{tag}"


@pytest.fixture
def make_key():
    return ssh_key


@pytest.fixture
def entry(make_key):
    def _entry(server: str, tag: str = None) -> SshKeyEntry:
        return SshKeyEntry(server=server, public_key=make_key(tag or "".join(c for c in server if c.isalnum())))
    return _entry


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'khm.db'}",
        FLOWS="default,work,home",
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def fatal_calls():
    return []


@pytest.fixture
def client(settings, fatal_calls):
    app = create_app(settings, on_fatal=fatal_calls.append)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def api(client):
    return KhmApiClient("http://testserver", client=client)


@pytest.fixture
def run_db(settings):
    """Run ``fn(database)`` against a migrated database in a fresh event loop."""
    def _run(fn):
        async def runner():
            database = Database(settings)
            try:
                await run_migrations(database)
                return await fn(database)
            finally:
                await database.dispose()
        return asyncio.run(runner())
    return _run


async def submit(database, flow, entries):
    async with database.session() as db:
        stats = await ReconciliationService(db, chunk_size=2).submit(flow, entries)
        await db.commit()
    return stats


async def read_flows(database):
    async with database.session() as db:
        return await load_flows(db)
