"""
Authorization decision engine: cache, remote check, fallback, escalation.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from .approvals import ApprovalWorkflowManager
from .caching import PermissionCache
from .exceptions import (
    AuthorizationUnavailable,
    DecisionTimeout,
    InvalidRequest,
    PermissionDenied,
    RemoteError,
    RemoteUnavailable,
)
from .fallback import FallbackPolicyTable
from .models import (
    ApprovalRequest,
    ApprovalStatus,
    Decision,
    DecisionSource,
    parse_resource,
    utcnow,
)
from .remote_client import RemoteAuthorizationClient

logger = logging.getLogger(__name__)

# Relations that allow granting access to others on a resource.
GRANTING_RELATIONS = ("owner", "manager")


class AuthorizationDecisionEngine:
    """
    Decides allow/deny for a principal and a (resource, relation) pair.

    Each query runs independently through:

    1. cache lookup, returning ``source=cache`` on a hit;
    2. remote check, caching and returning ``source=remote`` on success;
    3. fallback table when the remote service is unavailable, returning
       ``source=fallback`` and logging the degraded decision.

    A well-formed error from the remote service is raised as
    ``AuthorizationUnavailable`` and never answered from the fallback table.
    No retries happen here; the remote client owns those.
    """

    def __init__(
        self,
        remote: RemoteAuthorizationClient,
        cache: PermissionCache,
        fallback: FallbackPolicyTable,
        audit_sink: Optional[Any] = None,
        approvals: Optional[ApprovalWorkflowManager] = None,
        relations: Optional[Dict[str, List[str]]] = None,
        cache_ttl_seconds: Optional[float] = None,
        deny_cache_ttl_seconds: Optional[float] = None,
        decision_timeout_seconds: Optional[float] = None,
    ):
        """
        Initialize the decision engine.

        Args:
            remote: Client for the remote authorization service
            cache: Permission cache shared by all queries
            fallback: Table consulted while the remote service is unreachable
            audit_sink: Optional sink with ``async emit(record)``
            approvals: Optional approval workflow for escalating denials
            relations: Valid relations per resource type
            cache_ttl_seconds: TTL for cached allows (cache default if None)
            deny_cache_ttl_seconds: TTL for cached denials (cache default if None)
            decision_timeout_seconds: Default caller deadline for ``check``
        """
        self.remote = remote
        self.cache = cache
        self.fallback = fallback
        self.audit_sink = audit_sink
        self.approvals = approvals
        self.relations = relations or {}
        self.cache_ttl_seconds = cache_ttl_seconds
        self.deny_cache_ttl_seconds = deny_cache_ttl_seconds
        self.decision_timeout_seconds = decision_timeout_seconds

        if approvals is not None:
            approvals.add_listener(self._on_approval_resolved)

    async def check(
        self,
        principal: str,
        relation: str,
        resource: str,
        timeout: Optional[float] = None,
    ) -> Decision:
        """
        Decide whether ``principal`` holds ``relation`` on ``resource``.

        Args:
            principal: Authenticated actor identifier
            relation: Requested relation (e.g. "viewer")
            resource: Resource identifier ("type:id")
            timeout: Caller deadline in seconds; overrides the engine default

        Raises:
            InvalidRequest: malformed resource or unknown relation for its type
            AuthorizationUnavailable: the remote service rejected the query,
                or the deadline passed
        """
        self._validate(relation, resource)
        deadline = timeout if timeout is not None else self.decision_timeout_seconds

        if deadline is None:
            decision = await self._decide(principal, relation, resource)
        else:
            try:
                decision = await asyncio.wait_for(
                    self._decide(principal, relation, resource), timeout=deadline
                )
            except asyncio.TimeoutError as e:
                logger.error(
                    f"Decision deadline of {deadline}s exceeded for {principal} {relation} {resource}"
                )
                raise DecisionTimeout(f"No decision within {deadline}s") from e

        await self._audit(decision)
        return decision

    async def check_or_escalate(
        self,
        principal: str,
        relation: str,
        resource: str,
        justification: str = "",
        timeout: Optional[float] = None,
    ) -> Tuple[Decision, Optional[ApprovalRequest]]:
        """
        Check access and turn a denial into a pending approval request.

        Returns the decision and, when it was a denial and an approval
        workflow is attached, the pending request. An already pending
        request for the same principal, action and resource is reused, so
        repeated attempts do not notify approvers again.
        """
        decision = await self.check(principal, relation, resource, timeout=timeout)
        if decision.allowed or self.approvals is None:
            return decision, None

        existing = self.approvals.find_pending(principal, relation, resource)
        if existing is not None:
            logger.debug(f"Reusing pending approval request {existing.id}")
            return decision, existing

        request_id = await self.approvals.create_request(
            principal=principal,
            action=relation,
            resource=resource,
            justification=justification,
        )
        return decision, await self.approvals.get_status(request_id)

    async def write(self, principal: str, relation: str, resource: str) -> bool:
        """
        Write a relationship tuple and invalidate cached checks for the resource.

        Invalidation happens before returning, so no later check can observe a
        stale entry. Writes never use the fallback table.
        """
        self._validate(relation, resource)
        try:
            success = await self.remote.write(principal, relation, resource)
        except RemoteError as e:
            raise AuthorizationUnavailable(f"Write rejected by authorization service: {e}") from e
        except RemoteUnavailable as e:
            raise AuthorizationUnavailable(f"Authorization service unavailable: {e}") from e
        if success:
            self.cache.invalidate_resource(resource)
        return success

    async def grant(
        self,
        granter: str,
        target: str,
        relation: str,
        resource: str,
    ) -> Dict[str, Any]:
        """
        Grant ``relation`` on ``resource`` to ``target`` on behalf of ``granter``.

        The granter must be an owner or manager of the resource according to
        the remote service itself; cached and fallback answers are not used.

        Raises:
            PermissionDenied: the granter is neither owner nor manager
            AuthorizationUnavailable: the remote service failed
        """
        self._validate(relation, resource)
        if not await self._may_grant(granter, resource):
            logger.warning(f"{granter} attempted to grant {relation} on {resource} without rights")
            raise PermissionDenied(
                "You must be an owner or manager to grant access to this resource"
            )

        await self.write(target, relation, resource)
        logger.info(f"{granter} granted {relation} on {resource} to {target}")

        result = {
            "success": True,
            "resource": resource,
            "relation": relation,
            "target": target,
            "grantedBy": granter,
            "timestamp": utcnow().isoformat(),
        }
        await self._emit({"event": "access_granted", **result})
        return result

    async def list_objects(self, principal: str, relation: str, object_type: str) -> Set[str]:
        """
        Resources of ``object_type`` on which the principal holds ``relation``.

        While the remote service is unavailable only explicitly listed
        fallback resources are returned.
        """
        try:
            return await self.remote.list_objects(principal, relation, object_type)
        except RemoteUnavailable as e:
            logger.warning(f"Listing {object_type} objects from fallback table: {e}")
            return self.fallback.allowed_objects(principal, relation, object_type)
        except RemoteError as e:
            raise AuthorizationUnavailable(f"Authorization service rejected the query: {e}") from e

    async def _decide(self, principal: str, relation: str, resource: str) -> Decision:
        cached = self.cache.get(principal, relation, resource)
        if cached is not None:
            logger.debug(f"Cache hit for {principal}:{relation}:{resource}")
            return cached

        # A write landing while the remote call is in flight makes its answer stale.
        generation = self.cache.generation(resource)
        try:
            allowed = await self.remote.check(principal, relation, resource)
        except RemoteUnavailable as e:
            allowed = self.fallback.decide(principal, relation, resource)
            logger.warning(
                f"Authorization service unavailable ({e}); fallback decision "
                f"{principal} {relation} {resource} = {allowed}"
            )
            return Decision(
                allowed=allowed,
                source=DecisionSource.FALLBACK,
                resource=resource,
                relation=relation,
                principal=principal,
            )
        except RemoteError as e:
            raise AuthorizationUnavailable(
                f"Authorization service rejected the check: {e}"
            ) from e

        ttl = self.cache_ttl_seconds if allowed else self.deny_cache_ttl_seconds
        self.cache.put(principal, relation, resource, allowed, ttl=ttl, generation=generation)
        return Decision(
            allowed=allowed,
            source=DecisionSource.REMOTE,
            resource=resource,
            relation=relation,
            principal=principal,
        )

    async def _may_grant(self, granter: str, resource: str) -> bool:
        for relation in GRANTING_RELATIONS:
            try:
                if await self.remote.check(granter, relation, resource):
                    return True
            except (RemoteUnavailable, RemoteError) as e:
                raise AuthorizationUnavailable(
                    f"Unable to verify grant rights on {resource}: {e}"
                ) from e
        return False

    def _validate(self, relation: str, resource: str):
        resource_type, _ = parse_resource(resource)
        if not relation:
            raise InvalidRequest("Relation is required")
        valid = self.relations.get(resource_type)
        if valid is not None and relation not in valid:
            raise InvalidRequest(
                f"Relation {relation!r} is not valid for {resource_type} "
                f"(expected one of {', '.join(valid)})"
            )

    def _on_approval_resolved(self, request: ApprovalRequest):
        if request.status is ApprovalStatus.APPROVED:
            self.cache.put(
                request.principal,
                request.action,
                request.resource,
                True,
                ttl=self.cache_ttl_seconds,
            )

    async def _audit(self, decision: Decision):
        await self._emit({"event": "access_checked", **decision.to_dict()})

    async def _emit(self, record: Dict[str, Any]):
        if self.audit_sink is None:
            return
        try:
            await self.audit_sink.emit(record)
        except Exception as e:
            # Audit delivery is fire-and-forget.
            logger.error(f"Failed to emit audit record: {e}")
