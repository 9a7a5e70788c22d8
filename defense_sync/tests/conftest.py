"""
Pytest configuration for sync engine tests
"""

from typing import Any, Dict

import httpx
import pytest
import pytest_asyncio

from defense_sync.config import SyncSettings
from defense_sync.database.connection import Database
from defense_sync.hub import IntegrationHub

from .fakes import AUTOCLERK_API_KEY, FakePMS


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def settings(tmp_path) -> SyncSettings:
    return SyncSettings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'defense_sync.db'}",
        credentials_key="test-credentials-key-0123456789",
        evidence_storage_path=tmp_path / "evidence",
        retry_max_attempts=3,
        failure_threshold=3,
        webhook_callback_base_url="https://defense.example.com",
        json_logs=False,
    )


@pytest_asyncio.fixture
async def database(settings):
    database = Database(settings.database_url)
    await database.create_all()
    yield database
    await database.dispose()


@pytest.fixture
def fake_pms() -> FakePMS:
    return FakePMS()


@pytest_asyncio.fixture
async def hub(settings, database, fake_pms):
    hub = IntegrationHub(
        settings,
        database=database,
        http_options={"transport": httpx.MockTransport(fake_pms.handler)},
        sleep=no_sleep,
    )
    await hub.start()
    yield hub
    await hub.close()


@pytest.fixture
def autoclerk_credentials() -> Dict[str, Any]:
    return {"api_key": AUTOCLERK_API_KEY, "property_code": "HTL01"}


@pytest.fixture
def protel_credentials() -> Dict[str, Any]:
    return {"username": "api-user", "password": "s3cret-pass", "hotel_code": "PRT01"}
