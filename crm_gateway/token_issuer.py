"""
Delegated Token Issuer

Produces a short-lived bearer token that authorizes the gateway to act as
its service account against upstream endpoints that reject the static
API secret (currently: contact update).

ISSUANCE FLOW (one fresh run per forwarded request, nothing is cached):
1. Load the service-account bundle from the environment
2. Build the JWT claim set (iat/nbf/exp window, random jti)
3. Encode and sign the JWT with RS256 (PyJWT), kid taken from the bundle
4. POST the assertion to the bundle's token_uri (JWT-bearer grant)
5. Return the access_token from the JSON response
"""

import logging
import time
import uuid
from typing import Any, Dict, Optional

import httpx
import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from .config import ServiceAccountCredentials, get_upstream_timeout, load_service_account
from .exceptions import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

# =============================================================================
# ASSERTION PARAMETERS
# =============================================================================

JWT_BEARER_GRANT_TYPE: str = "urn:ietf:params:oauth:grant-type:jwt-bearer"

# Clock-skew allowance applied to nbf
CLOCK_SKEW_SECONDS: int = 30

# Assertion lifetime from iat
ASSERTION_LIFETIME_SECONDS: int = 300


def normalize_private_key(pem: str) -> str:
    """
    Return the PEM with real newlines.

    Secret stores that cannot hold multi-line values usually carry the key
    with literal "\\n" sequences instead.
    """
    if not pem:
        raise ConfigurationError("Private key missing")
    if "\\n" in pem:
        pem = pem.replace("\\n", "\n")
    return pem


def _load_signing_key(pem: str) -> rsa.RSAPrivateKey:
    try:
        key = serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise ConfigurationError(f"Failed to load service account private key: {exc}") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ConfigurationError("Service account private key must be an RSA key")
    return key


def build_claims(credentials: ServiceAccountCredentials, now: int) -> Dict[str, Any]:
    return {
        "iss": credentials.client_email,
        "sub": credentials.client_email,
        "aud": credentials.token_uri,
        "iat": now,
        "nbf": now - CLOCK_SKEW_SECONDS,
        "exp": now + ASSERTION_LIFETIME_SECONDS,
        "jti": str(uuid.uuid4()),
    }


def build_assertion(credentials: ServiceAccountCredentials, now: Optional[int] = None) -> str:
    """
    Build an RS256-signed JWT assertion for the service account.

    Args:
        credentials: Validated service-account bundle
        now: Issue time in epoch seconds (defaults to the current time)

    Returns:
        Compact JWS string "header.claims.signature"

    Raises:
        ConfigurationError: If the private key is missing or unusable
    """
    key = _load_signing_key(normalize_private_key(credentials.private_key))
    issued_at = int(time.time()) if now is None else int(now)

    kid = credentials.private_key_id
    return jwt.encode(
        build_claims(credentials, issued_at),
        key,
        algorithm="RS256",
        headers={"kid": kid} if kid else None,
    )


async def exchange_assertion(
    assertion: str,
    token_uri: str,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """
    Exchange a signed assertion for an access token at token_uri.

    Raises:
        UpstreamError: On a non-2xx response (carrying the upstream status and
            body), a transport failure, or a response without access_token
    """
    form = {"grant_type": JWT_BEARER_GRANT_TYPE, "assertion": assertion}

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=get_upstream_timeout()) as own_client:
                response = await own_client.post(token_uri, data=form)
        else:
            response = await client.post(token_uri, data=form)
    except httpx.HTTPError as exc:
        logger.warning(f"Token exchange request failed: {exc!r}")
        raise UpstreamError(f"Token exchange failed: {exc}") from exc

    if not response.is_success:
        logger.warning(f"Token exchange rejected with status {response.status_code}")
        raise UpstreamError(
            f"Token exchange failed: {response.status_code} {response.text}",
            status_code=response.status_code,
            body=response.text,
        )

    try:
        token = response.json().get("access_token")
    except (ValueError, AttributeError) as exc:
        raise UpstreamError("Token exchange returned an invalid JSON body", body=response.text) from exc
    if not isinstance(token, str) or not token:
        raise UpstreamError("Token exchange response missing access_token", body=response.text)
    return token


async def issue_delegated_token(client: Optional[httpx.AsyncClient] = None) -> str:
    """
    Issue a fresh delegated access token for the configured service account.

    Every call signs a new assertion and performs a new exchange; tokens are
    never reused between requests.
    """
    credentials = load_service_account()
    assertion = build_assertion(credentials)
    logger.info(
        f"Issuing delegated token for {credentials.client_email} "
        f"(kid={credentials.private_key_id or '-'})"
    )
    return await exchange_assertion(assertion, credentials.token_uri, client=client)
