"""
Test suite for the approval workflow manager
"""
import asyncio
import pytest
from unittest.mock import AsyncMock

from fga_authz.approvals import ApprovalWorkflowManager
from fga_authz.exceptions import AlreadyResolved, InvalidRequest, NotFound
from fga_authz.models import ApprovalStatus
from fga_authz.utils import expire_stale_approvals


class TestApprovalWorkflowManager:
    """Test approval request lifecycle"""

    @pytest.mark.asyncio
    async def test_create_request_is_pending(self, approvals):
        request_id = await approvals.create_request(
            "user:42", "editor", "document:plan", "Need to fix typos"
        )
        request = await approvals.get_status(request_id)

        assert request_id.startswith("req_")
        assert request.status is ApprovalStatus.PENDING
        assert request.principal == "user:42"
        assert request.resolved_at is None
        assert request.expires_at > request.created_at
        await approvals.shutdown()

    @pytest.mark.asyncio
    async def test_resolve_approved(self, approvals):
        request_id = await approvals.create_request("user:42", "editor", "document:plan", "")

        request = await approvals.resolve(request_id, "approved", "user:manager-1")

        assert request.status is ApprovalStatus.APPROVED
        assert request.resolved_by == "user:manager-1"
        assert request.resolved_at is not None
        assert request_id not in approvals._timers

    @pytest.mark.asyncio
    async def test_second_resolution_conflicts(self, approvals):
        """Test a request leaves pending exactly once"""
        request_id = await approvals.create_request("user:42", "editor", "document:plan", "")
        await approvals.resolve(request_id, "denied", "user:manager-1")

        with pytest.raises(AlreadyResolved) as exc_info:
            await approvals.resolve(request_id, "approved", "user:manager-2")

        assert exc_info.value.status == "denied"
        request = await approvals.get_status(request_id)
        assert request.status is ApprovalStatus.DENIED
        assert request.resolved_by == "user:manager-1"

    @pytest.mark.asyncio
    async def test_concurrent_resolutions_only_one_wins(self, approvals):
        request_id = await approvals.create_request("user:42", "editor", "document:plan", "")

        results = await asyncio.gather(
            approvals.resolve(request_id, "approved", "user:a"),
            approvals.resolve(request_id, "denied", "user:b"),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, AlreadyResolved)) == 1
        assert sum(1 for r in results if not isinstance(r, Exception)) == 1

    @pytest.mark.asyncio
    async def test_unknown_request(self, approvals):
        with pytest.raises(NotFound):
            await approvals.get_status("req_missing")
        with pytest.raises(NotFound):
            await approvals.resolve("req_missing", "approved", "user:manager-1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("outcome", ["expired", "pending", "maybe"])
    async def test_invalid_outcome(self, approvals, outcome):
        request_id = await approvals.create_request("user:42", "editor", "document:plan", "")
        with pytest.raises(InvalidRequest):
            await approvals.resolve(request_id, outcome, "user:manager-1")
        await approvals.shutdown()

    @pytest.mark.asyncio
    async def test_timeout_expires_never_approves(self):
        """Test an unresolved request expires on its timer and stays expired"""
        manager = ApprovalWorkflowManager(timeout_seconds=0.05)
        request_id = await manager.create_request("user:42", "editor", "document:plan", "")

        await asyncio.sleep(0.15)
        request = await manager.get_status(request_id)

        assert request.status is ApprovalStatus.EXPIRED
        assert request.is_effectively_denied is True
        assert request.resolved_by is None

        with pytest.raises(AlreadyResolved):
            await manager.resolve(request_id, "approved", "user:manager-1")
        assert (await manager.get_status(request_id)).status is ApprovalStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_resolution_cancels_timer(self):
        manager = ApprovalWorkflowManager(timeout_seconds=0.05)
        request_id = await manager.create_request("user:42", "editor", "document:plan", "")
        await manager.resolve(request_id, "approved", "user:manager-1")

        await asyncio.sleep(0.1)
        assert (await manager.get_status(request_id)).status is ApprovalStatus.APPROVED

    @pytest.mark.asyncio
    async def test_notifier_is_called(self):
        notifier = AsyncMock()
        manager = ApprovalWorkflowManager(timeout_seconds=60, notifier=notifier)

        request_id = await manager.create_request("user:42", "editor", "document:plan", "")
        await manager.shutdown()

        notifier.assert_awaited_once()
        assert notifier.call_args.args[0].id == request_id

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_fail_creation(self):
        notifier = AsyncMock(side_effect=ConnectionError("smtp down"))
        manager = ApprovalWorkflowManager(timeout_seconds=60, notifier=notifier)

        request_id = await manager.create_request("user:42", "editor", "document:plan", "")
        await manager.shutdown()

        assert (await manager.get_status(request_id)).status is ApprovalStatus.PENDING

    @pytest.mark.asyncio
    async def test_listeners_see_resolution(self, approvals):
        seen = []
        approvals.add_listener(seen.append)
        request_id = await approvals.create_request("user:42", "editor", "document:plan", "")

        await approvals.resolve(request_id, "approved", "user:manager-1")

        assert [r.status for r in seen] == [ApprovalStatus.APPROVED]

    @pytest.mark.asyncio
    async def test_get_status_returns_snapshot(self, approvals):
        request_id = await approvals.create_request("user:42", "editor", "document:plan", "")
        snapshot = await approvals.get_status(request_id)
        snapshot.status = ApprovalStatus.APPROVED

        assert (await approvals.get_status(request_id)).status is ApprovalStatus.PENDING
        await approvals.shutdown()

    def test_list_requests_unknown_status(self, approvals):
        with pytest.raises(InvalidRequest):
            approvals.list_requests("archived")

    @pytest.mark.asyncio
    async def test_find_pending(self, approvals):
        request_id = await approvals.create_request("user:42", "editor", "document:plan", "")

        assert approvals.find_pending("user:42", "editor", "document:plan").id == request_id
        assert approvals.find_pending("user:42", "owner", "document:plan") is None

        await approvals.resolve(request_id, "denied", "user:manager-1")
        assert approvals.find_pending("user:42", "editor", "document:plan") is None

    @pytest.mark.asyncio
    async def test_sweep_expires_overdue_requests(self):
        manager = ApprovalWorkflowManager(timeout_seconds=60)
        request_id = await manager.create_request("user:42", "editor", "document:plan", "")
        await manager.shutdown()

        # Simulate a request whose deadline passed while no timer was running
        stored = manager._requests[request_id]
        stored.expires_at = stored.created_at

        assert await expire_stale_approvals(manager) == 1
        assert manager.list_requests("expired")[0].id == request_id
        assert manager.list_requests("pending") == []

    def test_to_dict_field_names(self):
        from fga_authz.models import ApprovalRequest

        data = ApprovalRequest("user:42", "editor", "document:plan", "why").to_dict()
        assert set(data) >= {
            "id", "principal", "action", "resource", "justification",
            "status", "createdAt", "resolvedAt", "resolvedBy",
        }
        assert data["status"] == "pending"
