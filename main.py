"""Main entrypoint and application factory for the settlement engine API.

This module initializes the FastAPI application, configures logging, builds the
services container (which creates the database tables), and exposes the Scalar
API reference endpoint for interactive OpenAPI documentation. It also includes
the main entrypoint for running the app with Uvicorn.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import HTMLResponse
from scalar_fastapi import get_scalar_api_reference

from settlement.api.routes import router
from settlement.core.settings import get_settings
from settlement.core.utils import get_logger, setup_logging
from settlement.services.container import get_services


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan event handler: configure logging and build the services container (creates tables)."""
    _ = app  # Silence unused argument warning
    settings = get_settings()
    setup_logging(settings.log_file)
    get_services()
    get_logger("settlement.api").info(f"Settlement API ready (hub chain {settings.settlement_chain})")
    yield


app = FastAPI(
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    title="Deposit Settlement Engine API",
    description="""
    The Deposit Settlement Engine receives custodial wallet notifications and settles inbound deposits
    into the settlement asset on the settlement chain (bridging and swapping as needed).

    **Endpoints:**
    - `POST /webhooks/circle`: Signed Circle transaction notifications.
    - `GET /status/{{job_id}}`: Status of a swap job.
    - `GET /transactions/{{owner_id}}`: An owner's ledger records.
    - `GET /health`: Health check endpoint.
    - `GET /scalar`: Interactive Scalar OpenAPI documentation.
    """,
    version="1.0.0",
)
app.include_router(router)


@app.get("/scalar", include_in_schema=False)
async def scalar_docs() -> HTMLResponse:
    """Return Scalar API reference."""
    return get_scalar_api_reference(openapi_url=app.openapi_url, title=app.title)


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run("main:app", host=settings.server_host, port=settings.server_port, reload=True)
