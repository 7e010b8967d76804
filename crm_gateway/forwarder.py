"""
Upstream Forwarder

Builds the outbound CRM request for a validated payload, attaches the
operation's authorization and relays the CRM response back untouched.

RELAY CONTRACT:
- Status code, content type (default application/json) and raw body are
  passed through exactly as the CRM returned them
- No retries, no body interpretation, no caching
"""

import json
import logging
from typing import Any, Dict, Optional

import httpx
from fastapi import Response

from .config import (
    TENANT_FIELD,
    AuthScheme,
    Operation,
    UpstreamSettings,
    get_upstream_timeout,
    load_upstream_settings,
)
from .exceptions import UpstreamError
from .token_issuer import issue_delegated_token

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE: str = "application/json"


def merge_tenant(payload: Dict[str, Any], tenant_id: str) -> Dict[str, Any]:
    """Attach the resolved tenant. Applied last so it always wins."""
    return {**payload, TENANT_FIELD: tenant_id}


def to_query_params(payload: Dict[str, Any]) -> Dict[str, str]:
    """
    Flatten a payload into query parameters.

    Strings pass through, every other value (numbers, booleans, lists,
    objects) is sent as its compact JSON text. None values are dropped.
    """
    params: Dict[str, str] = {}
    for key, value in payload.items():
        if value is None:
            continue
        if isinstance(value, str):
            params[key] = value
        else:
            params[key] = json.dumps(value, separators=(",", ":"))
    return params


async def _authorization_header(
    settings: UpstreamSettings, client: Optional[httpx.AsyncClient]
) -> str:
    if settings.auth_scheme is AuthScheme.DELEGATED:
        token = await issue_delegated_token(client=client)
        return f"Bearer {token}"
    return f"Bearer {settings.static_api_key}"


async def _send(
    client: httpx.AsyncClient,
    method: str,
    settings: UpstreamSettings,
    body: Dict[str, Any],
) -> httpx.Response:
    authorization = await _authorization_header(settings, client)
    headers = {"Authorization": authorization, "Content-Type": "application/json"}
    if method == "GET":
        # Merged onto any query already present in the configured URL
        url = httpx.URL(settings.url).copy_merge_params(to_query_params(body))
        return await client.request(method, url, headers=headers)
    return await client.request(method, settings.url, json=body, headers=headers)


async def forward(
    operation: Operation,
    method: str,
    payload: Dict[str, Any],
    tenant_id: str,
    client: Optional[httpx.AsyncClient] = None,
) -> Response:
    """
    Forward a validated payload to the CRM on behalf of a tenant.

    Args:
        operation: Which upstream endpoint to call
        method: Outbound HTTP verb, mirroring the caller's
        payload: Whitelisted payload (never contains the tenant field)
        tenant_id: Tenant resolved from the caller's API key
        client: Optional shared client; a private one is opened otherwise

    Returns:
        Response carrying the CRM's status, content type and raw body

    Raises:
        ConfigurationError: If the operation's upstream settings are missing
        UpstreamError: If the token exchange or the CRM call itself fails
    """
    settings = load_upstream_settings(operation)
    method = method.upper()
    body = merge_tenant(payload, tenant_id)

    logger.info(f"Forwarding {operation.value} ({method}) for tenant: {tenant_id}")

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=get_upstream_timeout()) as own_client:
                upstream = await _send(own_client, method, settings, body)
        else:
            upstream = await _send(client, method, settings, body)
    except httpx.HTTPError as exc:
        logger.warning(f"Upstream {operation.value} request failed: {exc!r}")
        raise UpstreamError(f"Upstream request failed: {exc}") from exc

    content_type = upstream.headers.get("content-type") or DEFAULT_CONTENT_TYPE
    logger.info(f"Upstream {operation.value} answered {upstream.status_code} for tenant: {tenant_id}")

    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        headers={"Content-Type": content_type},
    )
