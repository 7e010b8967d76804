"""
Multi-Tenant Middleware Module

CRITICAL SECURITY COMPONENT:
This middleware is responsible for tenant isolation at the request level.
It ensures that:
1. Every request is authenticated via the x-client-key header
2. Tenant (business) identity is resolved SERVER-SIDE only
3. Tenant context is attached to request.state for downstream use
4. Missing keys result in 401, unknown keys in 403

ARCHITECTURE:
- Middleware intercepts ALL requests before they reach route handlers
- The client map is re-read from the environment on every request
- Route handlers access tenant via request.state, never from body/query
"""

import logging
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from .config import API_KEY_HEADER, get_client_map
from .exceptions import AuthenticationError, AuthorizationError, GatewayError, error_response

logger = logging.getLogger(__name__)


class TenantContext:
    """
    Immutable tenant context attached to each request.
    Contains all tenant-specific information needed for request processing.
    """
    def __init__(self, tenant_id: str, label: str, client_key: str):
        self._tenant_id = tenant_id
        self._label = label
        self._client_key = client_key

    @property
    def tenant_id(self) -> str:
        """Upstream business identifier (e.g., 'AG-B123')"""
        return self._tenant_id

    @property
    def label(self) -> str:
        """Human-readable label from the client map, or the tenant id"""
        return self._label

    @property
    def client_key(self) -> str:
        return self._client_key

    def __repr__(self) -> str:
        # client_key is a secret and is deliberately left out
        return f"TenantContext(tenant_id='{self._tenant_id}', label='{self._label}')"


def resolve_tenant(request: Request) -> TenantContext:
    """
    Authenticate the caller and resolve its tenant.

    Raises:
        AuthenticationError: x-client-key header missing or empty
        ConfigurationError: CLIENT_MAP_JSON missing or malformed
        AuthorizationError: key unknown, or its entry has no businessId
    """
    api_key: Optional[str] = request.headers.get(API_KEY_HEADER)
    if not api_key:
        raise AuthenticationError()

    entry = get_client_map().get(api_key)
    if not isinstance(entry, dict):
        raise AuthorizationError()

    tenant_id = entry.get("businessId")
    if not isinstance(tenant_id, str) or not tenant_id:
        raise AuthorizationError()

    label = entry.get("label")
    return TenantContext(
        tenant_id=tenant_id,
        label=label if isinstance(label, str) and label else tenant_id,
        client_key=api_key,
    )


class TenantMiddleware(BaseHTTPMiddleware):
    """
    FastAPI Middleware for Multi-Tenant Resolution

    SECURITY FLOW:
    1. Extract x-client-key from request headers
    2. Look the key up in the server-side client map
    3. Attach TenantContext to request.state
    4. Reject failures with the standard JSON error body
    """

    # Paths that don't require authentication
    EXEMPT_PATHS = {"/", "/docs", "/openapi.json", "/redoc", "/health"}

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.EXEMPT_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        try:
            tenant = resolve_tenant(request)
        except GatewayError as exc:
            logger.warning(
                f"Rejected {request.method} {request.url.path}: {exc.status_code} {exc.message}"
            )
            return error_response(exc)

        request.state.tenant = tenant
        logger.debug(f"Resolved {tenant!r} for {request.method} {request.url.path}")
        return await call_next(request)


def get_current_tenant(request: Request) -> TenantContext:
    """
    Dependency function to extract tenant from request state.

    Raises:
        GatewayError: If the middleware did not run (500)
    """
    tenant = getattr(request.state, "tenant", None)
    if tenant is None:
        # This should never happen if middleware is properly configured
        raise GatewayError(
            "Tenant context not found - middleware configuration error", status_code=500
        )
    return tenant
