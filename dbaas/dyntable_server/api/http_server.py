"""
HTTP server for DynTable.

A thin REST boundary over TenantDb: table declaration and lifecycle
routes plus a GraphQL endpoint, mounted per namespace under
/{context}/{identifier}/dynamic.

Invariants:
    - Every namespaced route requires the X-User-ID header
    - DynTableError maps to its status with an {"error", "error_code"} body
    - Any other exception is logged and answered with an opaque 500

How to change safely:
    - Keep error bodies in the shape clients already parse
    - GraphQL errors stay in the 200 response body, not the status
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .._version import __version__
from ..config import ServerConfig
from ..errors import DynTableError, NotFoundError, UnauthorizedError
from ..store import StoreFactory
from ..tenant_db import TenantDb

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/{context}/{identifier}/dynamic", tags=["DynTable"])


# =============================================================================
# Request Models
# =============================================================================


class DeclareRequest(BaseModel):
    """Declare tables from query-surface type definitions."""

    declaration: str = Field(..., description="Type declarations, e.g. 'type User { id: ID! }'")
    stubs: str = Field(default="", description="Declarations that only satisfy references")


class GraphQLRequest(BaseModel):
    """Execute a query-surface document."""

    query: str = Field(..., description="GraphQL document")
    variables: dict[str, Any] | None = Field(default=None, description="Variable values")


# =============================================================================
# Dependencies
# =============================================================================


@dataclass(frozen=True)
class Namespace:
    """Tenant namespace of a request."""

    user: str
    scope: str


def parse_scope(context: str, identifier: str) -> str:
    """Scope of a namespaced path.

    "user" is the caller's own namespace, "secure" is the scope named by
    identifier, and any other context is a scope of its own.
    """
    if context == "user":
        return ""
    if context == "secure":
        return identifier
    return context


def get_namespace(
    context: str,
    identifier: str,
    x_user_id: str | None = Header(default=None),
) -> Namespace:
    if not x_user_id:
        raise UnauthorizedError("X-User-ID header is required")
    return Namespace(user=x_user_id, scope=parse_scope(context, identifier))


def get_tenant_db(request: Request) -> TenantDb:
    return request.app.state.tenant_db


# =============================================================================
# Routes
# =============================================================================


@router.get("/tables")
async def list_tables(
    ns: Namespace = Depends(get_namespace),
    db: TenantDb = Depends(get_tenant_db),
) -> list[dict[str, Any]]:
    return [d.to_dict() for d in await db.get_schemas(ns.user, ns.scope)]


@router.get("/tables/{name}")
async def get_table(
    name: str,
    ns: Namespace = Depends(get_namespace),
    db: TenantDb = Depends(get_tenant_db),
) -> dict[str, Any]:
    description = await db.get_schema(ns.user, ns.scope, name)
    if description is None:
        raise NotFoundError(f"Table '{name}' not found", table=name)
    return description.to_dict()


@router.post("/tables", status_code=201)
async def declare_tables(
    body: DeclareRequest,
    ns: Namespace = Depends(get_namespace),
    db: TenantDb = Depends(get_tenant_db),
) -> list[dict[str, Any]]:
    created = await db.register_schemas(ns.user, ns.scope, body.declaration, body.stubs)
    return [d.to_dict() for d in created]


@router.put("/tables/{name}")
async def replace_table(
    name: str,
    body: DeclareRequest,
    ns: Namespace = Depends(get_namespace),
    db: TenantDb = Depends(get_tenant_db),
) -> dict[str, Any]:
    replaced = await db.replace_schema(ns.user, ns.scope, name, body.declaration, body.stubs)
    return replaced.to_dict()


@router.delete("/tables/{name}", status_code=204)
async def drop_table(
    name: str,
    ns: Namespace = Depends(get_namespace),
    db: TenantDb = Depends(get_tenant_db),
) -> Response:
    await db.drop_schema(ns.user, ns.scope, name)
    return Response(status_code=204)


@router.delete("/tables", status_code=204)
async def drop_tables(
    names: list[str] | None = Query(default=None),
    ns: Namespace = Depends(get_namespace),
    db: TenantDb = Depends(get_tenant_db),
) -> Response:
    """Drop the named tables, or every table of the namespace."""
    if names:
        await db.drop_many_schemas(ns.user, ns.scope, names)
    else:
        await db.drop_all(ns.user, ns.scope)
    return Response(status_code=204)


@router.post("/graphql")
async def graphql_query(
    body: GraphQLRequest,
    ns: Namespace = Depends(get_namespace),
    db: TenantDb = Depends(get_tenant_db),
) -> dict[str, Any]:
    return await db.query(ns.user, ns.scope, body.query, body.variables)


# =============================================================================
# App
# =============================================================================


async def handle_dyntable_error(request: Request, exc: DynTableError) -> JSONResponse:
    return JSONResponse(exc.to_dict(), status_code=exc.status)


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"HTTP handler error: {exc}", exc_info=True)
    return JSONResponse(
        {"error": "Internal server error", "error_code": "INTERNAL"},
        status_code=500,
    )


def create_app(config: ServerConfig | None = None, tenant_db: TenantDb | None = None) -> FastAPI:
    """Create the DynTable FastAPI app.

    Args:
        config: Server configuration (defaults apply when omitted)
        tenant_db: Tenant layer to serve; built from config.storage when omitted

    Returns:
        FastAPI application
    """
    config = config or ServerConfig()
    if tenant_db is None:
        tenant_db = TenantDb(StoreFactory(config.storage), debug=config.http.graphql_debug)

    app = FastAPI(
        title="DynTable",
        description="Multi-tenant dynamic tables with a generated GraphQL surface.",
        version=__version__,
    )
    app.state.tenant_db = tenant_db
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.http.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DynTableError, handle_dyntable_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.include_router(router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy", "service": "dyntable", "version": __version__}

    return app
