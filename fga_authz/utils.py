"""
Utility functions for wiring and running the authorization layer.
"""

import logging
from typing import Any, Optional

from openfga_sdk import ClientConfiguration, OpenFgaClient
from openfga_sdk.configuration import RetryParams
from openfga_sdk.credentials import CredentialConfiguration, Credentials

from .approvals import ApprovalWorkflowManager, Notifier
from .audit import LoggingAuditSink
from .caching import PermissionCache
from .config import AuthorizationSettings, get_settings
from .decision_engine import AuthorizationDecisionEngine
from .fallback import FallbackPolicyTable
from .remote_client import RemoteAuthorizationClient

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(settings: Optional[AuthorizationSettings] = None):
    """Configure root logging from settings."""
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT)


def build_openfga_client(settings: AuthorizationSettings) -> OpenFgaClient:
    """
    Create an OpenFGA client authenticated with client credentials.

    The SDK's own retry loop is disabled; bounded retries live in
    ``RemoteAuthorizationClient``.
    """
    configuration = ClientConfiguration(
        api_url=settings.api_url,
        store_id=settings.store_id,
        authorization_model_id=settings.model_id,
        credentials=Credentials(
            method="client_credentials",
            configuration=CredentialConfiguration(
                api_issuer=settings.api_token_issuer or settings.api_url,
                api_audience=settings.api_audience or settings.api_url,
                client_id=settings.client_id,
                client_secret=settings.client_secret,
            ),
        ),
        retry_params=RetryParams(max_retry=0),
    )
    return OpenFgaClient(configuration)


async def build_decision_engine(
    settings: Optional[AuthorizationSettings] = None,
    openfga_client: Optional[OpenFgaClient] = None,
    audit_sink: Optional[Any] = None,
    notifier: Optional[Notifier] = None,
) -> AuthorizationDecisionEngine:
    """
    Assemble the decision engine and its collaborators from settings.

    Call once per process from inside the running event loop and share the
    returned engine between requests.

    Args:
        settings: Validated settings (loaded from the environment if None)
        openfga_client: Pre-built OpenFGA client, mainly for tests
        audit_sink: Audit sink (defaults to structured logging)
        notifier: Async callable alerting approvers of new requests

    Returns:
        A ready AuthorizationDecisionEngine
    """
    settings = settings or get_settings()
    client = openfga_client or build_openfga_client(settings)

    remote = RemoteAuthorizationClient(
        client,
        store_id=settings.store_id,
        authorization_model_id=settings.model_id,
        timeout_seconds=settings.remote_timeout_seconds,
        max_retries=settings.remote_max_retries,
        retry_backoff_seconds=settings.remote_retry_backoff_seconds,
        principal_type=settings.principal_type,
    )
    cache = PermissionCache(
        ttl_seconds=settings.cache_ttl_seconds,
        max_size=settings.cache_max_size,
    )
    approvals = ApprovalWorkflowManager(
        timeout_seconds=settings.approval_timeout_seconds,
        notifier=notifier,
    )

    return AuthorizationDecisionEngine(
        remote=remote,
        cache=cache,
        fallback=FallbackPolicyTable.from_settings(settings),
        audit_sink=audit_sink or LoggingAuditSink(settings.audit_logger_name),
        approvals=approvals,
        relations=settings.relations,
        cache_ttl_seconds=settings.cache_ttl_seconds,
        deny_cache_ttl_seconds=settings.deny_cache_ttl_seconds,
        decision_timeout_seconds=settings.decision_timeout_seconds,
    )


async def expire_stale_approvals(
    approvals: ApprovalWorkflowManager,
    logger=None
) -> int:
    """
    Background job to expire approval requests whose timer never fired.

    Timers normally handle expiry; run this periodically (e.g., every minute)
    as a sweep after restarts or when requests were loaded from storage.

    Args:
        approvals: The approval workflow manager
        logger: Optional logger instance

    Returns:
        Number of requests expired
    """
    expired = approvals.expire_overdue()
    if logger and expired:
        logger.info(f"Expired {expired} stale approval requests")
    return expired
