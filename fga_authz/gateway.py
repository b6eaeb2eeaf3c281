"""
Authorization gateway that wraps request handlers with authorization checks.
"""

from typing import Callable, Any, Dict, Optional
from functools import wraps

from .decision_engine import AuthorizationDecisionEngine
from .exceptions import AuthorizationError
from .models import Decision


class AccessDenied(AuthorizationError):
    """Raised when a handler's authorization check denies access."""

    def __init__(
        self,
        message: str,
        decision: Decision,
        audit_entry: Dict[str, Any],
        approval_request_id: Optional[str] = None
    ):
        super().__init__(message)
        self.decision = decision
        self.audit_entry = audit_entry
        self.approval_request_id = approval_request_id


class AuthorizationGateway:
    """
    Gateway that checks every wrapped handler call before it runs.

    Denials raise ``AccessDenied``; a degraded permission system surfaces as
    ``AuthorizationUnavailable`` so callers can tell the two apart.
    """

    def __init__(self, engine: AuthorizationDecisionEngine):
        """
        Initialize the authorization gateway.

        Args:
            engine: The decision engine to use for checks
        """
        self.engine = engine
        self.audit_log = []

    def authorized_handler(
        self,
        resource_extractor: Callable[[Dict[str, Any]], str],
        relation: str = "viewer",
        escalate: bool = False
    ):
        """
        Decorator that wraps a handler with authorization.

        Args:
            resource_extractor: Function to extract the resource from handler kwargs
            relation: Required relation (viewer, editor, ...)
            escalate: Open an approval request when access is denied

        Example:
            @gateway.authorized_handler(
                resource_extractor=lambda args: f"document:{args['document_id']}",
                relation="viewer"
            )
            async def read_document(document_id: str) -> str:
                return await document_store.get(document_id)
        """
        def decorator(handler: Callable):
            @wraps(handler)
            async def wrapper(principal: str, justification: str = "", **kwargs) -> Any:
                resource = resource_extractor(kwargs)

                if escalate:
                    decision, approval = await self.engine.check_or_escalate(
                        principal, relation, resource, justification
                    )
                else:
                    decision = await self.engine.check(principal, relation, resource)
                    approval = None

                audit_entry = {
                    **decision.to_dict(),
                    "handler": handler.__name__,
                    "approvalRequestId": approval.id if approval else None,
                }
                self.audit_log.append(audit_entry)

                if not decision.allowed:
                    message = f"Access denied: {relation} on {resource}"
                    if approval is not None:
                        message += f" (approval request {approval.id} pending)"
                    raise AccessDenied(
                        message,
                        decision=decision,
                        audit_entry=audit_entry,
                        approval_request_id=approval.id if approval else None
                    )

                return await handler(**kwargs)

            return wrapper
        return decorator
