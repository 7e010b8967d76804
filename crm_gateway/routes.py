"""
API Routes Module for the CRM Contacts Gateway

This module defines the forwarded contact endpoints plus a health check.

MULTI-TENANT SECURITY:
- All forwarded routes take the tenant from request.state (set by middleware)
- The tenant is NEVER read from the request body or query parameters
- Payloads are validated against closed schemas before anything is sent

ENDPOINTS:
- POST /api/contacts         - Create a contact (static bearer secret)
- GET|POST /api/contacts/get - Fetch contacts (static bearer secret)
- PUT /api/contacts/update   - Update a contact (delegated service-account token)
- GET /health                - Health check
"""

import logging
from datetime import datetime, timezone
from typing import Any, Type

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel

from .config import APP_NAME, APP_VERSION, Operation
from .exceptions import GatewayError, PayloadValidationError
from .forwarder import forward
from .middleware import TenantContext, get_current_tenant
from .models import (
    ContactCreateRequest,
    ContactFetchRequest,
    ContactUpdateRequest,
    fetch_params_from_query,
    to_upstream_payload,
    validate_payload,
)

logger = logging.getLogger(__name__)

# Create router for all API endpoints
router = APIRouter()

_ERROR_RESPONSES = {
    400: {"description": "Payload failed validation"},
    401: {"description": "Missing x-client-key header"},
    403: {"description": "Unknown API key"},
    500: {"description": "Gateway configuration error"},
}


# =============================================================================
# HANDLER PLUMBING
# =============================================================================

async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as exc:
        raise PayloadValidationError("Invalid JSON body") from exc


async def _proxy(
    operation: Operation,
    request: Request,
    tenant: TenantContext,
    model: Type[BaseModel],
    raw: Any = None,
) -> Response:
    """
    Validate, forward and relay one operation.

    This is the error boundary for the operation: gateway errors propagate to
    the app's handler untouched, anything unexpected becomes a 400.
    """
    try:
        if raw is None:
            raw = await _read_json(request)
        payload = validate_payload(model, raw)
        return await forward(
            operation,
            request.method,
            to_upstream_payload(payload),
            tenant.tenant_id,
        )
    except GatewayError:
        raise
    except Exception as exc:
        logger.exception(f"Unhandled error during {operation.value} for tenant: {tenant.tenant_id}")
        raise GatewayError(str(exc) or "Bad Request") from exc


# =============================================================================
# CONTACT ENDPOINTS
# =============================================================================

@router.post(
    "/api/contacts",
    summary="Create a contact",
    description="""
    Create (or upsert via searchExisting) a contact in the caller's business.

    **MULTI-TENANT SECURITY:**
    - businessId is resolved from the x-client-key header
    - A businessId in the body is rejected (400)
    """,
    responses=_ERROR_RESPONSES,
)
async def create_contact(
    request: Request,
    tenant: TenantContext = Depends(get_current_tenant),
) -> Response:
    return await _proxy(Operation.CREATE, request, tenant, ContactCreateRequest)


@router.get(
    "/api/contacts/get",
    summary="Fetch contacts (query string)",
    description="""
    Fetch contacts of the caller's business. limit/offset are integers,
    returnFields is comma-separated and filters is a JSON object.
    """,
    responses=_ERROR_RESPONSES,
)
async def fetch_contacts(
    request: Request,
    tenant: TenantContext = Depends(get_current_tenant),
) -> Response:
    raw = fetch_params_from_query(request.query_params)
    return await _proxy(Operation.FETCH, request, tenant, ContactFetchRequest, raw=raw)


@router.post(
    "/api/contacts/get",
    summary="Fetch contacts (JSON body)",
    description="Same as the GET form, for queries too large for a URL.",
    responses=_ERROR_RESPONSES,
)
async def fetch_contacts_with_body(
    request: Request,
    tenant: TenantContext = Depends(get_current_tenant),
) -> Response:
    return await _proxy(Operation.FETCH, request, tenant, ContactFetchRequest)


@router.put(
    "/api/contacts/update",
    summary="Update a contact",
    description="""
    Update fields of an existing contact. The upstream update endpoint is
    called with a freshly issued service-account token.
    """,
    responses=_ERROR_RESPONSES,
)
async def update_contact(
    request: Request,
    tenant: TenantContext = Depends(get_current_tenant),
) -> Response:
    return await _proxy(Operation.UPDATE, request, tenant, ContactUpdateRequest)


# =============================================================================
# HEALTH CHECK ENDPOINT
# =============================================================================

@router.get(
    "/health",
    summary="Health check",
    description="Liveness check. Does not require authentication.",
)
async def health_check():
    return {
        "status": "healthy",
        "service": APP_NAME,
        "version": APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
