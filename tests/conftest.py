"""Pytest configuration for tests."""

import httpx
import pytest
import pytest_asyncio

from helpers import EBANX_WEBHOOK_SECRET, MAYA_WEBHOOK_SECRET, GatewayStub
from opstower_shared.models import Provider
from opstower_api.config import EBANXConfig, MayaConfig, Settings
from opstower_api.main import create_app
from opstower_api.services.orchestrator import build_orchestrator


@pytest.fixture
def settings(tmp_path):
    """Settings isolated to a per-test data directory."""
    return Settings(
        data_dir=str(tmp_path),
        maya=MayaConfig(
            public_key="pk-test-maya",
            secret_key="sk-test-maya",
            webhook_secret=MAYA_WEBHOOK_SECRET,
            base_url="https://maya.test",
        ),
        ebanx=EBANXConfig(
            integration_key="ebanx-integration-key",
            webhook_secret=EBANX_WEBHOOK_SECRET,
            base_url="https://ebanx.test/ws",
        ),
    )


@pytest.fixture
def maya_api():
    return GatewayStub()


@pytest.fixture
def ebanx_api():
    return GatewayStub()


@pytest.fixture
def orchestrator(settings, maya_api, ebanx_api):
    return build_orchestrator(
        settings,
        transports={Provider.MAYA: maya_api.transport, Provider.GCASH: ebanx_api.transport},
    )


@pytest.fixture
def app(settings, orchestrator):
    return create_app(settings=settings, orchestrator=orchestrator)


@pytest_asyncio.fixture
async def client(app):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    ) as c:
        yield c
