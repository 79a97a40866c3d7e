"""Gas network graph API - application wiring and entry point."""

import logging
import sys
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from psycopg_pool import AsyncConnectionPool  # type: ignore
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from .capacity import CapacityAggregator
from .enrichment import ContractEnricher
from .errors import (
    AuthenticationError,
    AuthNotConfiguredError,
    ConflictError,
    GasNetError,
    NotFoundError,
    QueryExecutionError,
    ValidationError,
    WritesDisabledError,
)
from .executor import GraphExecutor
from .ingest import IngestService
from .mcp_server import create_mcp_server
from .nominations import NominationImpact
from .paths import PathResolver
from .repository import NetworkRepository
from .routes import health_router, router
from .settings import Settings

logger = logging.getLogger("gasnet_graph_api")


def _middleware(settings: Settings, methods: list[str]) -> list[Middleware]:
    return [
        Middleware(
            CORSMiddleware,
            allow_origins=settings.allow_origins,
            allow_methods=methods,
            allow_headers=["*"],
        ),
        Middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts),
    ]


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": exc.message, **exc.details})

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
            for error in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"error": "Invalid request", "errors": errors})

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"message": exc.message})

    @app.exception_handler(ConflictError)
    async def conflict(request: Request, exc: ConflictError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"error": exc.message})

    @app.exception_handler(WritesDisabledError)
    async def writes_disabled(request: Request, exc: WritesDisabledError) -> JSONResponse:
        return JSONResponse(status_code=403, content={"error": exc.message})

    @app.exception_handler(AuthenticationError)
    async def unauthorized(request: Request, exc: AuthenticationError) -> JSONResponse:
        return JSONResponse(status_code=401, content={"error": exc.message})

    @app.exception_handler(AuthNotConfiguredError)
    async def auth_not_configured(request: Request, exc: AuthNotConfiguredError) -> JSONResponse:
        return JSONResponse(status_code=500, content={"error": exc.message})

    @app.exception_handler(QueryExecutionError)
    async def query_failed(request: Request, exc: QueryExecutionError) -> JSONResponse:
        return JSONResponse(status_code=500, content={"error": exc.message})

    @app.exception_handler(GasNetError)
    async def unexpected(request: Request, exc: GasNetError) -> JSONResponse:
        logger.error(f"Unhandled {type(exc).__name__}: {exc.message}")
        return JSONResponse(status_code=500, content={"error": exc.message})


def create_app(executor: GraphExecutor, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the REST application around ``executor``.

    Every service shares the executor; sessions are taken per operation, so
    nothing here holds a connection.
    """
    settings = settings or Settings()

    repository = NetworkRepository(executor)
    capacity = CapacityAggregator(executor)
    resolver = PathResolver(
        executor,
        capacity=capacity,
        max_hops_limit=settings.max_hops,
        concurrency=settings.enrich_concurrency,
    )

    app = FastAPI(
        title="Gas Network Graph API",
        description="Locations, nominations, constraints and capacity on an AgensGraph pipeline network.",
        version="1.0.0",
        middleware=_middleware(settings, ["GET", "POST", "PUT", "PATCH"]),
    )
    app.state.settings = settings
    app.state.executor = executor
    app.state.repository = repository
    app.state.capacity = capacity
    app.state.resolver = resolver
    app.state.nominations = NominationImpact(executor, resolver, settings.enrich_concurrency)
    app.state.enricher = ContractEnricher(repository, capacity, settings.enrich_concurrency)
    app.state.ingest = IngestService(executor, repository)

    _register_error_handlers(app)
    app.include_router(health_router)
    app.include_router(router)
    return app


async def main(settings: Settings) -> None:
    """
    Main entry point for the gas network graph service.

    Opens the connection pool, makes sure the graph exists, then serves
    either the REST API (``rest``) or the MCP tool surface
    (``stdio``, ``http``, ``sse``).
    """
    logger.info("Starting Gas Network Graph API")

    pool = AsyncConnectionPool(settings.connection_string, open=False)

    try:
        await pool.open()
        logger.info("Database connection pool opened successfully")

        executor = GraphExecutor(pool, settings.graphname, settings.read_timeout)
        try:
            await executor.ensure_graph()
        except QueryExecutionError:
            sys.exit(1)

        match settings.transport:
            case "rest":
                logger.info(f"Running Gas Network Graph API on {settings.host}:{settings.port}")
                app = create_app(executor, settings)
                config = uvicorn.Config(app, host=settings.host, port=settings.port, log_level="info")
                await uvicorn.Server(config).serve()
            case "http":
                logger.info(
                    f"Running Gas Network MCP Server with HTTP transport on "
                    f"{settings.host}:{settings.port}{settings.path}"
                )
                mcp = create_mcp_server(executor, settings)
                await mcp.run_http_async(
                    host=settings.host,
                    port=settings.port,
                    path=settings.path,
                    middleware=_middleware(settings, ["GET", "POST"]),
                    stateless_http=True,
                )
            case "stdio":
                logger.info("Running Gas Network MCP Server with stdio transport")
                mcp = create_mcp_server(executor, settings)
                await mcp.run_stdio_async()
            case "sse":
                logger.info(
                    f"Running Gas Network MCP Server with SSE transport on "
                    f"{settings.host}:{settings.port}{settings.path}"
                )
                mcp = create_mcp_server(executor, settings)
                await mcp.run_http_async(
                    host=settings.host,
                    port=settings.port,
                    path=settings.path,
                    middleware=_middleware(settings, ["GET", "POST"]),
                    transport="sse",
                )
            case _:
                error_msg = (
                    f"Invalid transport: {settings.transport} | Must be 'rest', 'stdio', 'sse', or 'http'"
                )
                logger.error(error_msg)
                raise ValueError(error_msg)

    finally:
        await pool.close()
        logger.info("Database connection pool closed")
