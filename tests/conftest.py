"""
Shared fixtures for the authorization layer tests.
"""
import pytest
from unittest.mock import AsyncMock

from fga_authz.approvals import ApprovalWorkflowManager
from fga_authz.audit import InMemoryAuditSink
from fga_authz.caching import PermissionCache
from fga_authz.config import DEFAULT_RELATIONS
from fga_authz.decision_engine import AuthorizationDecisionEngine
from fga_authz.fallback import FallbackPolicyTable
from fga_authz.remote_client import RemoteAuthorizationClient


class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return PermissionCache(ttl_seconds=10, max_size=100, clock=clock)


@pytest.fixture
def fallback():
    return FallbackPolicyTable(
        rules=["document:project-plan#viewer", "calendar:*#reader"],
        admin_rules=["document:project-plan#owner"],
    )


@pytest.fixture
def remote():
    """Remote client double; every method is an AsyncMock"""
    mock = AsyncMock(spec=RemoteAuthorizationClient)
    mock.check.return_value = True
    mock.write.return_value = True
    mock.list_objects.return_value = set()
    return mock


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def approvals():
    return ApprovalWorkflowManager(timeout_seconds=60)


@pytest.fixture
def engine(remote, cache, fallback, audit_sink, approvals):
    return AuthorizationDecisionEngine(
        remote=remote,
        cache=cache,
        fallback=fallback,
        audit_sink=audit_sink,
        approvals=approvals,
        relations=DEFAULT_RELATIONS,
        cache_ttl_seconds=10,
        deny_cache_ttl_seconds=5,
    )
