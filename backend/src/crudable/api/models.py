"""Response models for the table endpoints."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TablePermissions(BaseModel):
    read: bool
    create: bool
    update: bool
    delete: bool
    publish: bool


class TableSummary(BaseModel):
    name: str
    displayFields: list[str]
    permissions: TablePermissions


class TableList(BaseModel):
    tables: list[TableSummary]


class Pagination(BaseModel):
    total: int
    count: int
    limit: int | None = None
    offset: int = 0


class TableRows(BaseModel):
    """Result of a row query; related rows are nested under ``_relations``."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    table: str
    rows: list[dict[str, Any]]
    pagination: Pagination
    stats: dict[str, Any] | None = None
    table_schema: dict[str, Any] | None = Field(default=None, alias="schema")
