"""
Test suite for the OpenFGA remote authorization client
Tests request shaping, timeouts, retries and error translation
"""
import asyncio
import pytest
import aiohttp
from unittest.mock import AsyncMock, Mock

from openfga_sdk.exceptions import (
    ForbiddenException,
    ServiceException,
    ValidationException,
)

from fga_authz.exceptions import PermissionDenied, RemoteError, RemoteUnavailable
from fga_authz.remote_client import RemoteAuthorizationClient


async def _hang(*args, **kwargs):
    await asyncio.sleep(10)


class TestRemoteAuthorizationClient:
    """Test the remote client transport behaviour"""

    @pytest.fixture
    def fga_client(self):
        client = AsyncMock()
        client.check.return_value = Mock(allowed=True)
        client.write.return_value = Mock()
        client.list_objects.return_value = Mock(objects=["document:plan", "document:notes"])
        return client

    @pytest.fixture
    def remote(self, fga_client):
        return RemoteAuthorizationClient(
            fga_client,
            store_id="store-1",
            authorization_model_id="model-1",
            timeout_seconds=0.05,
            max_retries=2,
            retry_backoff_seconds=0,
        )

    @pytest.mark.asyncio
    async def test_check_sends_tuple_and_returns_allowed(self, remote, fga_client):
        """Test check builds the tuple and pins the model id"""
        assert await remote.check("user:42", "viewer", "document:plan") is True

        body, options = fga_client.check.call_args.args
        assert body.user == "user:42"
        assert body.relation == "viewer"
        assert body.object == "document:plan"
        assert options == {"authorization_model_id": "model-1"}

    @pytest.mark.asyncio
    async def test_bare_principal_gets_type_prefix(self, remote, fga_client):
        """Test bare subject ids are sent as user:<sub>"""
        await remote.check("auth0|abc", "viewer", "document:plan")
        body, _ = fga_client.check.call_args.args
        assert body.user == "user:auth0|abc"

    @pytest.mark.asyncio
    async def test_check_denied(self, remote, fga_client):
        fga_client.check.return_value = Mock(allowed=False)
        assert await remote.check("user:42", "editor", "document:plan") is False

    @pytest.mark.asyncio
    async def test_check_timeout_is_retried_then_unavailable(self, remote, fga_client):
        """Test timeouts are retried a bounded number of times"""
        fga_client.check.side_effect = _hang

        with pytest.raises(RemoteUnavailable) as exc_info:
            await remote.check("user:42", "viewer", "document:plan")

        assert exc_info.value.is_timeout is True
        assert fga_client.check.call_count == 3

    @pytest.mark.asyncio
    async def test_check_recovers_after_transient_failure(self, remote, fga_client):
        fga_client.check.side_effect = [
            aiohttp.ClientConnectionError("connection refused"),
            Mock(allowed=True),
        ]
        assert await remote.check("user:42", "viewer", "document:plan") is True
        assert fga_client.check.call_count == 2

    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(self, remote, fga_client):
        fga_client.check.side_effect = ServiceException(status=503, reason="Service Unavailable")

        with pytest.raises(RemoteUnavailable) as exc_info:
            await remote.check("user:42", "viewer", "document:plan")
        assert exc_info.value.is_timeout is False

    @pytest.mark.asyncio
    async def test_validation_error_is_remote_error_without_retry(self, remote, fga_client):
        """Test well-formed rejections are not retried"""
        fga_client.check.side_effect = ValidationException(status=400, reason="invalid model id")

        with pytest.raises(RemoteError) as exc_info:
            await remote.check("user:42", "viewer", "document:plan")

        assert exc_info.value.status == 400
        assert fga_client.check.call_count == 1

    @pytest.mark.asyncio
    async def test_write_sends_single_tuple(self, remote, fga_client):
        assert await remote.write("user:7", "editor", "document:plan") is True

        body, _ = fga_client.write.call_args.args
        assert len(body.writes) == 1
        assert body.writes[0].user == "user:7"
        assert body.writes[0].relation == "editor"
        assert body.writes[0].object == "document:plan"

    @pytest.mark.asyncio
    async def test_write_is_never_retried(self, remote, fga_client):
        """Test writes are attempted exactly once"""
        fga_client.write.side_effect = _hang

        with pytest.raises(RemoteUnavailable):
            await remote.write("user:7", "editor", "document:plan")
        assert fga_client.write.call_count == 1

    @pytest.mark.asyncio
    async def test_write_forbidden_is_permission_denied(self, remote, fga_client):
        fga_client.write.side_effect = ForbiddenException(status=403, reason="Forbidden")

        with pytest.raises(PermissionDenied):
            await remote.write("user:7", "owner", "document:plan")

    @pytest.mark.asyncio
    async def test_list_objects_returns_set(self, remote, fga_client):
        objects = await remote.list_objects("user:42", "viewer", "document")

        assert objects == {"document:plan", "document:notes"}
        body, _ = fga_client.list_objects.call_args.args
        assert body.type == "document"
        assert body.relation == "viewer"

    @pytest.mark.asyncio
    async def test_health_check_reports_status(self, remote, fga_client):
        health = await remote.health_check()
        assert health["status"] == "healthy"
        assert health["storeId"] == "store-1"

        fga_client.read_authorization_models.side_effect = aiohttp.ClientConnectionError("down")
        health = await remote.health_check()
        assert health["status"] == "unhealthy"
