"""
Data models for the authorization decision layer.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, Tuple

from .exceptions import InvalidRequest


class DecisionSource(str, Enum):
    """Where an authorization decision came from."""
    CACHE = "cache"
    REMOTE = "remote"
    FALLBACK = "fallback"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not ApprovalStatus.PENDING


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_resource(resource: str) -> Tuple[str, str]:
    """
    Split a ``type:instance-id`` resource identifier.

    Only the first colon separates the type; instance ids may contain colons.

    Raises:
        InvalidRequest: if the identifier is not of the form ``type:id``
    """
    if not isinstance(resource, str) or ":" not in resource:
        raise InvalidRequest(f"Resource must be of the form 'type:id', got {resource!r}")
    resource_type, _, instance_id = resource.partition(":")
    if not resource_type or not instance_id:
        raise InvalidRequest(f"Resource must be of the form 'type:id', got {resource!r}")
    return resource_type, instance_id


@dataclass(frozen=True)
class Decision:
    """Outcome of one authorization query."""
    allowed: bool
    source: DecisionSource
    resource: str
    relation: str
    principal: str
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def degraded(self) -> bool:
        return self.source is DecisionSource.FALLBACK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "source": self.source.value,
            "resource": self.resource,
            "relation": self.relation,
            "principal": self.principal,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class CacheEntry:
    """A cached check result; ``expires_at`` is on the cache's clock."""
    allowed: bool
    expires_at: float


@dataclass
class ApprovalRequest:
    """
    A request for human approval of a denied action.

    Mutated exactly once: the status transition out of ``pending``.
    """
    principal: str
    action: str
    resource: str
    justification: str
    id: str = field(default_factory=lambda: f"req_{uuid.uuid4().hex[:12]}")
    status: ApprovalStatus = ApprovalStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    expires_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    @property
    def is_effectively_denied(self) -> bool:
        """Expired requests count as denied."""
        return self.status in (ApprovalStatus.DENIED, ApprovalStatus.EXPIRED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "principal": self.principal,
            "action": self.action,
            "resource": self.resource,
            "justification": self.justification,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "resolvedAt": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolvedBy": self.resolved_by,
        }
