"""Storage Protocol: the interface the query services depend on."""

from typing import Any, Protocol, runtime_checkable

from crudable.schema.loader import TableModel


@runtime_checkable
class Storage(Protocol):
    """Parameterized, read-mostly SQL execution.

    Services build SQL from schema-validated identifiers only and pass
    every value through ``params``. ``placeholder`` and ``quote`` let them
    render dialect-correct statements.
    """

    dialect: str
    placeholder: str

    def quote(self, identifier: str) -> str: ...

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def query(self, sql: str, params: list[Any] | None = None) -> list[dict[str, Any]]: ...

    async def initialize_table(self, table: TableModel) -> None: ...
