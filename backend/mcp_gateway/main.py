from dotenv import load_dotenv
load_dotenv()  # Load environment variables before other imports

from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
import structlog

from mcp_gateway import __version__
from mcp_gateway.core.config import Settings
from mcp_gateway.core.errors import GatewayError
from mcp_gateway.core.logging_config import configure_logging, RequestContextMiddleware
from mcp_gateway.services.container import GatewayServices, build_services

settings = Settings.from_env(dotenv=False)
configure_logging(json_format=settings.json_logs, log_level=settings.log_level)

logger = structlog.get_logger(__name__)


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts) or "Invalid request"


def create_app(services: Optional[GatewayServices] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        services: Pre-built services (tests); built from the environment on startup when omitted
    """
    app = FastAPI(title="MCP Gateway", version=__version__)
    app.state.services = services

    # Request context middleware for logging (must be added before CORS)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("Request failed", path=request.url.path, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": _validation_message(exc)})

    from mcp_gateway.api.endpoints import admin, mcp, tools

    app.include_router(mcp.router, prefix="/mcp", tags=["mcp"])
    app.include_router(tools.router, prefix="/tools", tags=["tools"])
    app.include_router(admin.router, prefix="/admin", tags=["admin"])

    # Generated images are served from the configured image directory
    image_dir = services.settings.image_dir if services else settings.image_dir
    app.mount("/images", StaticFiles(directory=image_dir, check_dir=False), name="images")

    @app.on_event("startup")
    async def startup_event():
        """Initialize services on startup."""
        logger.info("Starting MCP Gateway", version=__version__)
        if app.state.services is None:
            app.state.services = build_services(settings)

        current = app.state.services
        Path(current.settings.image_dir).mkdir(parents=True, exist_ok=True)
        await current.startup()

        logger.info("MCP Gateway startup complete", mode=current.store.mode)

    @app.on_event("shutdown")
    async def shutdown_event():
        if app.state.services is not None:
            await app.state.services.shutdown()

    @app.get("/health")
    def health():
        logger.debug("Health check requested")
        return {"status": "ok"}

    return app


app = create_app()


def run():
    import uvicorn
    uvicorn.run("mcp_gateway.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
