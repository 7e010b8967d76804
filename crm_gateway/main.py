"""
CRM Contacts Gateway - Main Application Entry Point

This is the FastAPI application that wires the tenant middleware, the
contact routes and the error boundary together.

ARCHITECTURE OVERVIEW:
┌─────────────────────────────────────────────────────────────────┐
│                         FastAPI App                              │
├─────────────────────────────────────────────────────────────────┤
│  Middleware Layer                                               │
│  ┌─────────────────────────────────────────────────────────────┐│
│  │ CORSMiddleware (only when CORS_ORIGINS is set)              ││
│  │ TenantMiddleware: x-client-key -> TenantContext (401/403)   ││
│  └─────────────────────────────────────────────────────────────┘│
├─────────────────────────────────────────────────────────────────┤
│  Route Handlers (routes.py)                                     │
│  ┌─────────────────────────────────────────────────────────────┐│
│  │ closed-schema validation (models.py)                        ││
│  │ forward + relay (forwarder.py)                              ││
│  │ delegated token for update (token_issuer.py)                ││
│  └─────────────────────────────────────────────────────────────┘│
├─────────────────────────────────────────────────────────────────┤
│  Error boundary: GatewayError -> {"error": ...}                 │
└─────────────────────────────────────────────────────────────────┘

MULTI-TENANT SECURITY GUARANTEES:
1. Tenant identity comes ONLY from the validated x-client-key header
2. A caller-supplied businessId is rejected, never merged
3. Secrets and the client map are re-read per request, never cached
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .config import (
    API_KEY_HEADER,
    APP_NAME,
    APP_VERSION,
    get_cors_origins,
    get_log_level,
    validate_config,
)
from .exceptions import GatewayError, error_response
from .middleware import TenantMiddleware
from .routes import router

# Configure logging
logging.basicConfig(
    level=get_log_level(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFESPAN (STARTUP/SHUTDOWN)
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    STARTUP:
    - Report configuration problems (the service still starts: every
      request re-reads and re-validates what it needs)
    """
    logger.info(f"Starting {APP_NAME} v{APP_VERSION}")

    config_errors = validate_config()
    if config_errors:
        logger.warning("Configuration errors detected:")
        for error in config_errors:
            logger.warning(f"  - {error}")
    else:
        logger.info("Configuration validated successfully")

    yield

    logger.info(f"Shutting down {APP_NAME}")


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_app() -> FastAPI:
    app = FastAPI(
        title=APP_NAME,
        description="""
## Multi-Tenant CRM Contacts Gateway

Forwards contact create/fetch/update calls to the CRM on behalf of the
business mapped to the caller's API key.

### Usage

```bash
curl -X POST "http://localhost:8000/api/contacts" \\
  -H "x-client-key: <your key>" \\
  -H "Content-Type: application/json" \\
  -d '{"fields": [{"id": "standard__email", "value": "a@b.com"}]}'
```
        """,
        version=APP_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc.status_code} {exc.message}")
        return error_response(exc)

    # Outermost middleware is added last: CORS must answer preflights
    # before tenant resolution sees them.
    app.add_middleware(TenantMiddleware)

    cors_origins = get_cors_origins()
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_methods=["GET", "POST", "PUT", "OPTIONS"],
            allow_headers=["Content-Type", API_KEY_HEADER],
            max_age=86400,
        )

    app.include_router(router)

    @app.get("/", tags=["Root"])
    async def root():
        """Service information. Does not require authentication."""
        return {
            "name": APP_NAME,
            "version": APP_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()


# =============================================================================
# RUN WITH UVICORN (for direct execution)
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "crm_gateway.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 8000)),
        log_level="info",
    )
