"""
Pytest configuration and fixtures for the CRM gateway tests.

Every test gets a fully provisioned environment (client map, upstream URLs,
static secret, service-account bundle) through monkeypatch, so tests never
depend on the developer's real environment.
"""
import json

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient

from crm_gateway.config import ServiceAccountCredentials
from crm_gateway.main import create_app

CREATE_URL = "https://crm.test/contacts/create"
FETCH_URL = "https://crm.test/contacts/get"
UPDATE_URL = "https://crm.test/contacts/update"
TOKEN_URI = "https://sso.test/oauth2/token"
STATIC_API_KEY = "static-secret"

CLIENT_MAP = {
    "k1": {"businessId": "B123", "label": "Acme Roofing"},
    "k2": {"businessId": "B456"},
    "k-empty": {"businessId": ""},
}


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    """Throwaway signing key, generated once per test session."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_private_key) -> str:
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture(scope="session")
def public_key_pem(rsa_private_key) -> str:
    return rsa_private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


@pytest.fixture
def service_account_bundle(private_key_pem) -> dict:
    """Service-account JSON as it would be pasted into a secret store."""
    return {
        "type": "service_account",
        "project_id": "crm-gateway-test",
        "private_key_id": "kid-123",
        "private_key": private_key_pem,
        "client_email": "gateway@crm-gateway-test.iam.example.com",
        "client_id": "1234567890",
        "auth_uri": "https://sso.test/oauth2/auth",
        "token_uri": TOKEN_URI,
        "auth_provider_x509_cert_url": "https://sso.test/certs",
        "client_x509_cert_url": "https://sso.test/certs/gateway",
    }


@pytest.fixture
def credentials(service_account_bundle) -> ServiceAccountCredentials:
    return ServiceAccountCredentials.model_validate(service_account_bundle)


@pytest.fixture
def gateway_env(monkeypatch, service_account_bundle):
    """Provision every variable the gateway reads."""
    monkeypatch.setenv("CLIENT_MAP_JSON", json.dumps(CLIENT_MAP))
    monkeypatch.setenv("VEND_API_KEY", STATIC_API_KEY)
    monkeypatch.setenv("VEND_CONTACTS_CREATE_URL", CREATE_URL)
    monkeypatch.setenv("VEND_CONTACTS_GET_URL", FETCH_URL)
    monkeypatch.setenv("VEND_CONTACTS_UPDATE_URL", UPDATE_URL)
    monkeypatch.setenv("VEND_SERVICE_ACCOUNT_SECRET", json.dumps(service_account_bundle))
    monkeypatch.delenv("GATEWAY_UPSTREAM_TIMEOUT", raising=False)
    return monkeypatch


@pytest_asyncio.fixture
async def async_client(gateway_env):
    """Async HTTP client bound to a fresh app instance."""
    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://gateway.test") as client:
        yield client
