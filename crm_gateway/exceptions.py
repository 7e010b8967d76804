"""
Error Taxonomy for the CRM Gateway

Every local failure is raised as a GatewayError subclass and rendered ONCE,
at the boundary, as a JSON body of the form {"error": "<message>"}.

STATUS MAPPING:
- ConfigurationError     -> 500 (server-side secrets/config missing or malformed)
- AuthenticationError    -> 401 (missing x-client-key)
- AuthorizationError     -> 403 (unknown key / unresolvable tenant)
- PayloadValidationError -> 400 (closed-schema violation)
- UpstreamError          -> upstream's own status (token exchange, transport)
- GatewayError           -> 400 (default / uncaught)

Upstream CRM responses are NOT errors here: whatever status the CRM returns
is relayed verbatim by the forwarder.
"""

from typing import Optional

from fastapi.responses import JSONResponse


class GatewayError(Exception):
    """Base exception for all gateway failures."""

    status_code: int = 400

    def __init__(self, message: str = "Bad Request", status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(GatewayError):
    """Raised when environment-provided configuration or secrets are unusable."""

    status_code = 500


class AuthenticationError(GatewayError):
    """Raised when the caller did not present an API key (401)."""

    status_code = 401

    def __init__(self, message: str = "Missing x-client-key") -> None:
        super().__init__(message)


class AuthorizationError(GatewayError):
    """Raised when the API key does not resolve to a tenant (403)."""

    status_code = 403

    def __init__(self, message: str = "Invalid API key") -> None:
        super().__init__(message)


class PayloadValidationError(GatewayError):
    """Raised when the request payload fails its whitelist schema (400)."""

    status_code = 400


class UpstreamError(GatewayError):
    """
    Raised when an upstream call fails before a relayable response exists.

    Carries the upstream status and raw body text so the caller can
    diagnose the failure (e.g. a rejected token exchange).
    """

    def __init__(self, message: str, status_code: int = 502, body: str = "") -> None:
        super().__init__(message, status_code=status_code)
        self.body = body


def error_response(exc: GatewayError) -> JSONResponse:
    """Render a gateway error as the standard JSON error body."""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})
