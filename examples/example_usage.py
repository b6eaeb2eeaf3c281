"""
Example usage of the authorization decision layer.

This demonstrates the flow a request handler goes through: check access,
grant access, and escalate a denial into an approval request.
"""

import asyncio
import logging

from fga_authz import AccessDenied, AuthorizationGateway, AuthorizationUnavailable
from fga_authz.config import get_settings
from fga_authz.utils import build_decision_engine, configure_logging


# Example document store (in production, this would be a real database/service)
DOCUMENTS = {
    "project-plan": "Milestones for the alpha release...",
    "requirements": "Functional requirements...",
}


async def notify_approvers(request):
    """In production, send an email, Slack message or push notification."""
    logging.getLogger("example").info(
        f"Approver needed: {request.principal} wants {request.action} on {request.resource}"
    )


async def example_complete_flow():
    """
    Example of the complete authorization flow.

    This shows:
    1. Building the engine from FGA_* environment variables
    2. Checking access directly
    3. Granting access as a document owner
    4. Guarding handlers with the gateway, escalating denials
    5. Resolving the approval request as an approver
    """
    settings = get_settings()
    configure_logging(settings)

    engine = await build_decision_engine(settings, notifier=notify_approvers)
    gateway = AuthorizationGateway(engine)

    decision = await engine.check("user:alice", "viewer", "document:project-plan")
    print(f"Check: {decision.to_dict()}")

    try:
        grant = await engine.grant("user:alice", "user:bob", "viewer", "document:project-plan")
        print(f"Grant: {grant}")
    except AuthorizationUnavailable as e:
        print(f"Permission system degraded: {e}")

    @gateway.authorized_handler(
        resource_extractor=lambda args: f"document:{args['document_id']}",
        relation="editor",
        escalate=True
    )
    async def update_document(document_id: str, content: str) -> bool:
        DOCUMENTS[document_id] = content
        return True

    try:
        await update_document(
            principal="user:bob",
            justification="Updating milestones after planning meeting",
            document_id="project-plan",
            content="Revised milestones..."
        )
    except AccessDenied as e:
        print(f"Denied, approval request: {e.approval_request_id}")
        if e.approval_request_id:
            request = await engine.approvals.resolve(
                e.approval_request_id, "approved", "user:alice"
            )
            print(f"Approval resolved: {request.to_dict()}")

    await engine.approvals.shutdown()
    await engine.remote.close()


if __name__ == "__main__":
    asyncio.run(example_complete_flow())
