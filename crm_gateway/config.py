"""
Configuration module for the multi-tenant CRM gateway.
Contains header/field constants and the accessors for every
environment-provided secret.

MULTI-TENANT SECURITY:
- API keys are mapped server-side to tenant (business) identities
- Tenant identity is NEVER trusted from client input
- Every accessor re-reads the environment on each call: nothing is cached
  across requests, so rotated secrets take effect immediately
"""

import json
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from . import __version__
from .exceptions import ConfigurationError


# =============================================================================
# APPLICATION METADATA
# =============================================================================

APP_NAME: str = "CRM Contacts Gateway"
APP_VERSION: str = __version__

# =============================================================================
# SECURITY CONSTANTS
# =============================================================================

API_KEY_HEADER: str = "x-client-key"

# Field the upstream CRM uses to scope a request to one business (tenant).
# Injected server-side only; never accepted from the caller.
TENANT_FIELD: str = "businessId"

# =============================================================================
# ENVIRONMENT VARIABLE NAMES
# =============================================================================

CLIENT_MAP_ENV: str = "CLIENT_MAP_JSON"
STATIC_API_KEY_ENV: str = "VEND_API_KEY"
SERVICE_ACCOUNT_ENV: str = "VEND_SERVICE_ACCOUNT_SECRET"
CREATE_URL_ENV: str = "VEND_CONTACTS_CREATE_URL"
FETCH_URL_ENV: str = "VEND_CONTACTS_GET_URL"
UPDATE_URL_ENV: str = "VEND_CONTACTS_UPDATE_URL"
UPSTREAM_TIMEOUT_ENV: str = "GATEWAY_UPSTREAM_TIMEOUT"
CORS_ORIGINS_ENV: str = "CORS_ORIGINS"
LOG_LEVEL_ENV: str = "LOG_LEVEL"


# =============================================================================
# OPERATIONS
# =============================================================================

class AuthScheme(str, Enum):
    """How the gateway authorizes itself against an upstream endpoint."""
    STATIC = "static"        # shared bearer secret (VEND_API_KEY)
    DELEGATED = "delegated"  # service-account JWT exchanged for an access token


class Operation(str, Enum):
    """Upstream contact operations exposed through the gateway."""
    CREATE = "create"
    FETCH = "fetch"
    UPDATE = "update"

    @property
    def url_env(self) -> str:
        return _OPERATION_URL_ENV[self]

    @property
    def auth_scheme(self) -> AuthScheme:
        # The upstream update endpoint only accepts service-account tokens
        return AuthScheme.DELEGATED if self is Operation.UPDATE else AuthScheme.STATIC


_OPERATION_URL_ENV: Dict[Operation, str] = {
    Operation.CREATE: CREATE_URL_ENV,
    Operation.FETCH: FETCH_URL_ENV,
    Operation.UPDATE: UPDATE_URL_ENV,
}


@dataclass(frozen=True)
class UpstreamSettings:
    """Resolved upstream endpoint for a single forwarded request."""
    operation: Operation
    url: str
    auth_scheme: AuthScheme
    static_api_key: Optional[str] = None


class ServiceAccountCredentials(BaseModel):
    """
    Service-account credential bundle (Google-style JSON key file).

    Only private_key, client_email and token_uri take part in signing;
    the remaining fields are carried for completeness.
    """
    model_config = ConfigDict(extra="ignore")

    type: str = ""
    project_id: str = ""
    private_key_id: str = ""
    private_key: str = ""
    client_email: str = ""
    client_id: str = ""
    auth_uri: str = ""
    token_uri: str = ""
    auth_provider_x509_cert_url: str = ""
    client_x509_cert_url: str = ""
    user_id: Optional[str] = None


# =============================================================================
# ACCESSORS (read fresh on every call)
# =============================================================================

def _require_env(name: str) -> str:
    value = os.environ.get(name, "").strip()
    if not value:
        raise ConfigurationError(f"Missing {name}")
    return value


def get_client_map() -> Dict[str, Dict[str, Any]]:
    """
    Load the caller credential map: API key -> {"businessId": ..., "label": ...}.

    Raises:
        ConfigurationError: If CLIENT_MAP_JSON is unset, not JSON,
            or not a JSON object
    """
    raw = _require_env(CLIENT_MAP_ENV)
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid {CLIENT_MAP_ENV}: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ConfigurationError(f"Invalid {CLIENT_MAP_ENV}: must be a JSON object")
    return parsed


def load_service_account() -> ServiceAccountCredentials:
    """
    Load and check the service-account credential bundle.

    Raises:
        ConfigurationError: If the bundle is missing, malformed, or lacks
            private_key, client_email or token_uri
    """
    raw = _require_env(SERVICE_ACCOUNT_ENV)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Failed to load service account credentials: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError("Failed to load service account credentials: must be a JSON object")

    try:
        credentials = ServiceAccountCredentials.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Failed to load service account credentials: {exc}") from exc

    missing = [
        name for name in ("private_key", "client_email", "token_uri")
        if not getattr(credentials, name).strip()
    ]
    if missing:
        raise ConfigurationError(
            "Service account JSON missing required fields: " + ", ".join(missing)
        )
    return credentials


def load_upstream_settings(operation: Operation) -> UpstreamSettings:
    """
    Resolve the upstream endpoint and the secrets needed to call it.

    Static operations need VEND_API_KEY; the delegated operation needs the
    service-account bundle to be present (it is parsed later, at issuance).
    """
    scheme = operation.auth_scheme
    static_api_key = None
    if scheme is AuthScheme.STATIC:
        static_api_key = _require_env(STATIC_API_KEY_ENV)
    else:
        _require_env(SERVICE_ACCOUNT_ENV)
    url = _require_env(operation.url_env)
    return UpstreamSettings(
        operation=operation,
        url=url,
        auth_scheme=scheme,
        static_api_key=static_api_key,
    )


def get_upstream_timeout() -> Optional[float]:
    """Outbound timeout in seconds, or None to wait on the platform's own limit."""
    raw = os.environ.get(UPSTREAM_TIMEOUT_ENV, "").strip()
    if not raw:
        return None
    try:
        timeout = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid {UPSTREAM_TIMEOUT_ENV}: {raw!r}") from exc
    return timeout if timeout > 0 else None


def get_cors_origins() -> List[str]:
    raw = os.environ.get(CORS_ORIGINS_ENV, "")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def get_log_level() -> str:
    return os.environ.get(LOG_LEVEL_ENV, "INFO").upper()


def validate_config() -> List[str]:
    """
    Report configuration problems without raising.

    Used at startup for operator visibility only; each request still
    re-validates what it needs.
    """
    errors: List[str] = []
    for name in (CLIENT_MAP_ENV, STATIC_API_KEY_ENV, CREATE_URL_ENV, FETCH_URL_ENV, UPDATE_URL_ENV):
        if not os.environ.get(name, "").strip():
            errors.append(f"Missing {name}")

    try:
        get_client_map()
    except ConfigurationError as exc:
        if exc.message not in errors:
            errors.append(exc.message)

    try:
        load_service_account()
    except ConfigurationError as exc:
        errors.append(exc.message)

    try:
        get_upstream_timeout()
    except ConfigurationError as exc:
        errors.append(exc.message)

    return errors
