"""
FGA Authz - Authorization decision layer over a hosted ReBAC service

This package decides allow/deny for an authenticated principal and a
(resource, relation) pair using OpenFGA, with a short-lived permission
cache, a fail-closed fallback table for outages, and an asynchronous
human-approval workflow for escalating denials.
"""

from .approvals import ApprovalWorkflowManager
from .audit import InMemoryAuditSink, LoggingAuditSink
from .caching import PermissionCache
from .config import AuthorizationSettings, get_settings
from .decision_engine import AuthorizationDecisionEngine
from .exceptions import (
    AlreadyResolved,
    AuthorizationError,
    AuthorizationUnavailable,
    CacheCorruption,
    DecisionTimeout,
    InvalidRequest,
    NotFound,
    PermissionDenied,
    RemoteError,
    RemoteUnavailable,
)
from .fallback import FallbackPolicyTable
from .gateway import AccessDenied, AuthorizationGateway
from .models import ApprovalRequest, ApprovalStatus, Decision, DecisionSource
from .remote_client import RemoteAuthorizationClient

__version__ = "0.1.0"
__all__ = [
    "AccessDenied",
    "AlreadyResolved",
    "ApprovalRequest",
    "ApprovalStatus",
    "ApprovalWorkflowManager",
    "AuthorizationDecisionEngine",
    "AuthorizationError",
    "AuthorizationGateway",
    "AuthorizationSettings",
    "AuthorizationUnavailable",
    "CacheCorruption",
    "Decision",
    "DecisionSource",
    "DecisionTimeout",
    "FallbackPolicyTable",
    "InMemoryAuditSink",
    "InvalidRequest",
    "LoggingAuditSink",
    "NotFound",
    "PermissionCache",
    "PermissionDenied",
    "RemoteAuthorizationClient",
    "RemoteError",
    "RemoteUnavailable",
    "get_settings",
]
