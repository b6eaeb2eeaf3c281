"""
Asynchronous human-approval workflow for denied requests.

A denial can be escalated into a pending approval request. A human approver
resolves it through ``resolve``; if nobody acts within the configured window
the request expires. The timer never approves anything.
"""

import asyncio
import logging
import threading
from dataclasses import replace
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .exceptions import AlreadyResolved, InvalidRequest, NotFound
from .models import ApprovalRequest, ApprovalStatus, utcnow

logger = logging.getLogger(__name__)

Notifier = Callable[[ApprovalRequest], Awaitable[Any]]
Listener = Callable[[ApprovalRequest], None]

RESOLUTION_OUTCOMES = (ApprovalStatus.APPROVED, ApprovalStatus.DENIED)


class ApprovalWorkflowManager:
    """
    Creates, tracks and resolves approval requests.

    Each pending request owns one timer, cancelled on resolution. Status
    changes are check-then-set under a lock, so of two concurrent ``resolve``
    calls exactly one succeeds. Resolved requests are retained for audit.
    """

    def __init__(
        self,
        timeout_seconds: float = 900.0,
        notifier: Optional[Notifier] = None,
        request_store: Optional[Dict[str, ApprovalRequest]] = None,
    ):
        """
        Initialize the approval workflow manager.

        Args:
            timeout_seconds: Window after which a pending request expires
            notifier: Optional async callable alerting a human approver
            request_store: Optional dict-like store for approval requests
        """
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self.timeout_seconds = timeout_seconds
        self.notifier = notifier
        self._requests = request_store if request_store is not None else {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._listeners: List[Listener] = []
        self._background: Set[asyncio.Task] = set()
        self._lock = threading.Lock()

    def add_listener(self, listener: Listener):
        """Register a callback invoked with every request leaving ``pending``."""
        self._listeners.append(listener)

    async def create_request(
        self,
        principal: str,
        action: str,
        resource: str,
        justification: str = "",
    ) -> str:
        """
        Store a new pending request and start its timeout timer.

        Returns:
            request_id: The created request ID
        """
        created_at = utcnow()
        request = ApprovalRequest(
            principal=principal,
            action=action,
            resource=resource,
            justification=justification,
            created_at=created_at,
            expires_at=created_at + timedelta(seconds=self.timeout_seconds),
        )
        with self._lock:
            self._requests[request.id] = request
            snapshot = replace(request)

        loop = asyncio.get_running_loop()
        self._timers[request.id] = loop.call_later(self.timeout_seconds, self._expire, request.id)

        logger.info(
            f"Approval request {request.id} created: {principal} wants {action} on {resource}"
        )

        if self.notifier is not None:
            task = loop.create_task(self._notify(snapshot))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

        return request.id

    async def resolve(self, request_id: str, outcome: str, resolved_by: str) -> ApprovalRequest:
        """
        Record an approver's decision.

        Raises:
            InvalidRequest: outcome is not ``approved`` or ``denied``
            NotFound: unknown request id
            AlreadyResolved: the request is no longer pending
        """
        try:
            status = ApprovalStatus(outcome)
        except ValueError:
            status = None
        if status not in RESOLUTION_OUTCOMES:
            raise InvalidRequest(f"Outcome must be 'approved' or 'denied', got {outcome!r}")
        if not resolved_by:
            raise InvalidRequest("resolved_by is required")

        self._expire_if_overdue(request_id)
        request = self._transition(request_id, status, resolved_by)
        logger.info(f"Approval request {request_id} {status.value} by {resolved_by}")
        return request

    async def get_status(self, request_id: str) -> ApprovalRequest:
        """Return a snapshot of the request. Raises NotFound for unknown ids."""
        self._expire_if_overdue(request_id)
        with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                raise NotFound(f"Approval request {request_id} not found")
            return replace(request)

    def list_requests(self, status: Optional[str] = None) -> List[ApprovalRequest]:
        wanted = None
        if status is not None:
            try:
                wanted = ApprovalStatus(status)
            except ValueError:
                raise InvalidRequest(f"Unknown approval status {status!r}") from None
        with self._lock:
            return [
                replace(r) for r in self._requests.values()
                if wanted is None or r.status is wanted
            ]

    def find_pending(self, principal: str, action: str, resource: str) -> Optional[ApprovalRequest]:
        """Return the pending request for this principal, action and resource, if any."""
        self.expire_overdue()
        with self._lock:
            for request in self._requests.values():
                if (
                    request.status is ApprovalStatus.PENDING
                    and request.principal == principal
                    and request.action == action
                    and request.resource == resource
                ):
                    return replace(request)
        return None

    def expire_overdue(self) -> int:
        """Expire every pending request past its deadline. Returns how many expired."""
        now = utcnow()
        with self._lock:
            overdue = [
                r.id for r in self._requests.values()
                if r.status is ApprovalStatus.PENDING and r.expires_at and r.expires_at <= now
            ]
        expired = 0
        for request_id in overdue:
            if self._expire(request_id):
                expired += 1
        return expired

    async def shutdown(self):
        """Cancel outstanding timers and wait for pending notifications."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def _expire(self, request_id: str) -> bool:
        try:
            self._transition(request_id, ApprovalStatus.EXPIRED, None)
        except (NotFound, AlreadyResolved):
            # Resolved concurrently with the timer firing.
            return False
        logger.info(f"Approval request {request_id} expired without a decision")
        return True

    def _expire_if_overdue(self, request_id: str):
        with self._lock:
            request = self._requests.get(request_id)
            overdue = (
                request is not None
                and request.status is ApprovalStatus.PENDING
                and request.expires_at is not None
                and request.expires_at <= utcnow()
            )
        if overdue:
            self._expire(request_id)

    def _transition(
        self,
        request_id: str,
        status: ApprovalStatus,
        resolved_by: Optional[str],
    ) -> ApprovalRequest:
        with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                raise NotFound(f"Approval request {request_id} not found")
            if request.status.is_terminal:
                raise AlreadyResolved(request_id, request.status.value)
            request.status = status
            request.resolved_at = utcnow()
            request.resolved_by = resolved_by
            snapshot = replace(request)

        timer = self._timers.pop(request_id, None)
        if timer is not None:
            timer.cancel()

        for listener in self._listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Approval listener failed for {request_id}: {e}")
        return snapshot

    async def _notify(self, request: ApprovalRequest):
        try:
            await self.notifier(request)
        except Exception as e:
            logger.error(f"Failed to notify approvers about {request.id}: {e}")
