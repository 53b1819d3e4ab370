"""FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from crudable.api.models import TableList, TableRows
from crudable.auth import JWTService, get_user_context, user_context_from_request
from crudable.core.config import AppConfig
from crudable.persistence import Storage, create_storage
from crudable.schema import SchemaLoader, SchemaRegistry
from crudable.schema.validator import validate_metadata_dir, validate_registry
from crudable.services import TableQueryService

logger = logging.getLogger(__name__)

# Global instances (initialized on startup)
config: AppConfig | None = None
registry: SchemaRegistry | None = None
storage: Storage | None = None
table_service: TableQueryService | None = None
jwt_service: JWTService | None = None


def _log_schema_issues(issues: list, label: str) -> None:
    """Log validation issues; they warn but never block startup."""
    if not issues:
        return
    error_count = sum(1 for i in issues if i.severity == "error")
    warn_count = sum(1 for i in issues if i.severity == "warning")
    for issue in issues:
        if issue.severity == "error":
            logger.error("%s error: %s", label, issue)
        else:
            logger.warning("%s warning: %s", label, issue)
    logger.warning(
        "%s: %d error(s), %d warning(s). "
        "Run 'crudable schema validate' for details.",
        label,
        error_count,
        warn_count,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize on startup, cleanup on shutdown."""
    global config, registry, storage, table_service, jwt_service

    config = AppConfig.from_env()
    config.configure_logging()

    # Validate schema YAML files against JSON Schemas, then the loaded schema itself
    _log_schema_issues(validate_metadata_dir(config.metadata_path), "Schema file")
    registry = SchemaLoader(config.metadata_path).load()
    _log_schema_issues(validate_registry(registry), "Schema")

    storage = create_storage(config.database_url)
    await storage.connect()
    for table in registry.tables.values():
        await storage.initialize_table(table)

    table_service = TableQueryService(registry, storage)

    # Auth can be disabled via environment variable for testing
    jwt_service = None if config.disable_auth else JWTService(config.secret_key)

    yield

    # Cleanup
    if storage:
        await storage.close()


app = FastAPI(title="Crudable API", lifespan=lifespan)

# CORS for frontend dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def auth_middleware(request: Request, call_next):
    """Extract JWT from Authorization header and set user context."""
    request.state.user_context = None
    if jwt_service:
        request.state.user_context = user_context_from_request(request, jwt_service)
    return await call_next(request)


def _service() -> TableQueryService:
    if not table_service:
        raise HTTPException(500, "Table service not initialized")
    return table_service


def _respond(result: dict[str, Any]) -> Any:
    """Map a service failure ``{status, error}`` onto the HTTP status code."""
    if result.get("success"):
        return result
    return JSONResponse(status_code=result["status"], content={"error": result["error"]})


# --- Table Endpoints ---


@app.get("/api/tables", response_model=TableList)
async def list_tables(request: Request):
    """Tables readable by the caller, with capability flags."""
    return {"tables": _service().list_tables(get_user_context(request))}


@app.get("/api/{table}", response_model=TableRows, response_model_exclude_unset=True)
async def get_table_rows(
    table: str,
    request: Request,
    limit: str | None = None,
    offset: str | None = None,
    order_by: str | None = Query(None, alias="orderBy"),
    order: str | None = None,
    relation: str | None = None,
    include_schema: str | None = Query(None, alias="includeSchema"),
    compact: str | None = None,
    use_proxy: str | None = Query(None, alias="useProxy"),
    no_id: str | None = Query(None, alias="noId"),
    no_system_fields: str | None = Query(None, alias="noSystemFields"),
    where: str | None = None,
):
    """Rows of a table, filtered by the caller's roles."""
    result = await _service().get_table_data(
        table,
        user=get_user_context(request),
        limit=limit,
        offset=offset,
        order_by=order_by,
        order=order,
        custom_where=where,
        relation=relation,
        include_schema=include_schema,
        compact=compact,
        use_proxy=use_proxy,
        no_id=no_id,
        no_system_fields=no_system_fields,
    )
    return _respond(result)


@app.get("/api/{table}/structure")
async def get_table_structure(table: str, request: Request):
    """Field, relation and permission description of a table."""
    return _respond(_service().get_table_structure(table, get_user_context(request)))


@app.get("/api/{table}/{id}", response_model=TableRows, response_model_exclude_unset=True)
async def get_table_row(
    table: str,
    id: str,
    request: Request,
    relation: str | None = None,
    include_schema: str | None = Query(None, alias="includeSchema"),
    compact: str | None = None,
    use_proxy: str | None = Query(None, alias="useProxy"),
    no_id: str | None = Query(None, alias="noId"),
    no_system_fields: str | None = Query(None, alias="noSystemFields"),
):
    """A single row by id; 404 when it does not exist or is not visible."""
    result = await _service().get_table_data(
        table,
        user=get_user_context(request),
        id=id,
        relation=relation,
        include_schema=include_schema,
        compact=compact,
        use_proxy=use_proxy,
        no_id=no_id,
        no_system_fields=no_system_fields,
    )
    return _respond(result)
