"""
Unit tests for RemediationConfigService.

Tests tenant configuration lookups against a mocked MySQL pool.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import aiomysql
import pytest

from incident_intake.services.remediation_config import RemediationConfigService


def make_service(fetchone):
    """Build a service whose pool returns rows from the given mock."""
    cursor = MagicMock()
    cursor.execute = AsyncMock()
    cursor.fetchone = fetchone

    conn = MagicMock()
    conn.cursor.return_value.__aenter__.return_value = cursor

    service = RemediationConfigService(database_url="mysql+aiomysql://app:secret@db:3307/interworky")
    service._pool = MagicMock()
    service._pool.acquire.return_value.__aenter__.return_value = conn
    return service, cursor


class TestDatabaseURL:

    def test_parse_full_url(self):
        service = RemediationConfigService()

        config = service._parse_database_url("mysql+aiomysql://app:secret@db:3307/tenants")

        assert config == {
            "host": "db",
            "port": 3307,
            "user": "app",
            "password": "secret",
            "database": "tenants",
        }

    def test_parse_defaults(self):
        config = RemediationConfigService()._parse_database_url("mysql+aiomysql://db/")

        assert config["port"] == 3306
        assert config["user"] == "root"
        assert config["password"] == ""


class TestGetConfig:

    @pytest.mark.asyncio
    async def test_configured_tenant(self):
        service, cursor = make_service(AsyncMock(return_value={
            "organization_id": "t1",
            "auto_fix_enabled": 1,
            "github_app_installation_id": 12345,
            "github_repo_full_name": "acme/shop",
        }))

        config = await service.get_config("t1")

        assert config.organization_id == "t1"
        assert config.auto_fix_enabled is True
        assert config.installation_id == "12345"
        assert config.wiring_present is True
        sql, params = cursor.execute.await_args.args
        assert "organization_version_control" in sql
        assert params == ("t1",)

    @pytest.mark.asyncio
    async def test_partial_wiring(self):
        service, _ = make_service(AsyncMock(return_value={
            "organization_id": "t1",
            "auto_fix_enabled": 0,
            "github_app_installation_id": None,
            "github_repo_full_name": "",
        }))

        config = await service.get_config("t1")

        assert config.auto_fix_enabled is False
        assert config.repo_full_name is None
        assert config.wiring_present is False

    @pytest.mark.asyncio
    async def test_unconfigured_tenant(self):
        service, _ = make_service(AsyncMock(return_value=None))

        assert await service.get_config("t2") is None

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self):
        fetchone = AsyncMock(side_effect=[
            aiomysql.OperationalError(2013, "Lost connection"),
            {"organization_id": "t1", "auto_fix_enabled": 1},
        ])
        service, _ = make_service(fetchone)

        with patch("incident_intake.utils.resilience.asyncio.sleep", new=AsyncMock()):
            config = await service.get_config("t1")

        assert config.organization_id == "t1"
        assert fetchone.await_count == 2

    @pytest.mark.asyncio
    async def test_persistent_error_raises(self):
        fetchone = AsyncMock(side_effect=aiomysql.OperationalError(2003, "Can't connect"))
        service, _ = make_service(fetchone)

        with patch("incident_intake.utils.resilience.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(aiomysql.OperationalError):
                await service.get_config("t1")

        assert fetchone.await_count == 3

    @pytest.mark.asyncio
    async def test_uninitialized_pool(self):
        service = RemediationConfigService()

        with pytest.raises(RuntimeError, match="not initialized"):
            await service.get_config("t1")


@pytest.mark.asyncio
async def test_close_releases_pool():
    service = RemediationConfigService()
    pool = MagicMock()
    pool.wait_closed = AsyncMock()
    service._pool = pool

    await service.close()

    pool.close.assert_called_once()
    pool.wait_closed.assert_awaited_once()
