"""
Typed client for the remote relationship-based authorization service (OpenFGA).

This is a pure transport: it performs no authorization of its own, it only
bounds every call with a timeout and sorts failures into "unavailable"
(retriable, fallback applies) and "error" (the service answered and said no).
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import aiohttp
from openfga_sdk import OpenFgaClient
from openfga_sdk.client.models import (
    ClientCheckRequest,
    ClientListObjectsRequest,
    ClientTuple,
    ClientWriteRequest,
)
from openfga_sdk.exceptions import (
    ApiException,
    ForbiddenException,
    OpenApiException,
    RateLimitExceededError,
    ServiceException,
)

from .exceptions import PermissionDenied, RemoteError, RemoteUnavailable

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (aiohttp.ClientError, OSError, ServiceException, RateLimitExceededError)


class RemoteAuthorizationClient:
    """
    Client wrapping ``check``, ``write`` and ``list_objects`` on OpenFGA.

    Read-only calls (``check``, ``list_objects``) are retried a bounded number
    of times on unavailability; ``write`` is attempted exactly once.
    """

    def __init__(
        self,
        openfga_client: OpenFgaClient,
        store_id: Optional[str] = None,
        authorization_model_id: Optional[str] = None,
        timeout_seconds: float = 3.0,
        max_retries: int = 2,
        retry_backoff_seconds: float = 0.05,
        principal_type: str = "user",
    ):
        """
        Initialize the remote client.

        Args:
            openfga_client: Configured OpenFGA client
            store_id: OpenFGA store ID (informational, the client carries it)
            authorization_model_id: Pin checks to this model when set
            timeout_seconds: Upper bound on a single remote call
            max_retries: Extra attempts for read-only calls on unavailability
            retry_backoff_seconds: Base delay between retries (linear)
            principal_type: Type prefix added to bare principal ids
        """
        self.client = openfga_client
        self.store_id = store_id
        self.authorization_model_id = authorization_model_id
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self.principal_type = principal_type

    def fga_user(self, principal: str) -> str:
        """Return the OpenFGA user string for a principal (``user:<sub>``)."""
        if ":" in principal:
            return principal
        return f"{self.principal_type}:{principal}"

    async def check(self, principal: str, relation: str, resource: str) -> bool:
        """
        Ask the service whether ``principal`` has ``relation`` on ``resource``.

        Raises:
            RemoteUnavailable: transport failure or timeout after all retries
            RemoteError: the service rejected the request
        """
        body = ClientCheckRequest(
            user=self.fga_user(principal),
            relation=relation,
            object=resource,
        )

        async def call():
            response = await self.client.check(body, self._options())
            return bool(response.allowed)

        return await self._with_retries("check", call)

    async def write(self, principal: str, relation: str, resource: str) -> bool:
        """
        Write the tuple ``(principal, relation, resource)``.

        Raises:
            RemoteUnavailable: transport failure or timeout (not retried)
            PermissionDenied: the service refused the write with 403
            RemoteError: the service rejected the request
        """
        body = ClientWriteRequest(
            writes=[
                ClientTuple(
                    user=self.fga_user(principal),
                    relation=relation,
                    object=resource,
                )
            ]
        )
        await self._call("write", self.client.write(body, self._options()))
        return True

    async def list_objects(self, principal: str, relation: str, object_type: str) -> Set[str]:
        """Enumerate objects of ``object_type`` the principal holds ``relation`` on."""
        body = ClientListObjectsRequest(
            user=self.fga_user(principal),
            relation=relation,
            type=object_type,
        )

        async def call():
            response = await self.client.list_objects(body, self._options())
            return set(response.objects or [])

        return await self._with_retries("list_objects", call)

    async def health_check(self) -> Dict[str, Any]:
        """Probe the service and report status and response time in ms."""
        started = time.monotonic()
        try:
            await self._call(
                "read_authorization_models",
                self.client.read_authorization_models(options={"page_size": 1}),
            )
            status = "healthy"
        except (RemoteUnavailable, RemoteError) as e:
            logger.warning(f"Authorization service health check failed: {e}")
            status = "unhealthy"
        return {
            "status": status,
            "responseTime": round((time.monotonic() - started) * 1000),
            "storeId": self.store_id,
        }

    async def close(self):
        await self.client.close()

    def _options(self) -> Dict[str, Any]:
        if self.authorization_model_id:
            return {"authorization_model_id": self.authorization_model_id}
        return {}

    async def _call(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        """Await one remote call under the timeout, translating failures."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise RemoteUnavailable(
                f"{operation} timed out after {self.timeout_seconds}s", is_timeout=True
            ) from e
        except _TRANSPORT_ERRORS as e:
            raise RemoteUnavailable(f"{operation} failed: {e}") from e
        except ForbiddenException as e:
            if operation == "write":
                raise PermissionDenied(f"Authorization service refused the write: {e}") from e
            raise RemoteError(f"{operation} forbidden by authorization service: {e}", status=403) from e
        except OpenApiException as e:
            status = e.status if isinstance(e, ApiException) else None
            logger.error(f"Authorization service rejected {operation}: {e}")
            raise RemoteError(f"{operation} rejected by authorization service: {e}", status=status) from e

    async def _with_retries(self, operation: str, call: Callable[[], Awaitable[Any]]) -> Any:
        attempt = 0
        while True:
            try:
                return await self._call(operation, call())
            except RemoteUnavailable as e:
                if attempt >= self.max_retries:
                    raise
                attempt += 1
                logger.info(f"Retrying {operation} ({attempt}/{self.max_retries}) after: {e}")
                await asyncio.sleep(self.retry_backoff_seconds * attempt)
