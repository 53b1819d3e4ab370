"""Exception hierarchy shared by the services and the HTTP layer."""


class CrudableError(Exception):
    """Base exception carrying the HTTP status the API layer should use."""

    status: int = 500

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status

    def to_dict(self) -> dict:
        return {"status": self.status, "error": self.message}


class NotFoundError(CrudableError):
    """Unknown table, or a single row that does not exist for the caller."""

    status = 404


class PermissionDeniedError(CrudableError):
    """The caller's roles lack a table-level capability."""

    status = 403


class ValidationError(CrudableError):
    """Malformed request parameters (pagination, ordering, filters, identifiers)."""

    status = 400


class StorageError(CrudableError):
    """The underlying database query failed."""

    status = 500


class SchemaError(Exception):
    """The schema files could not be loaded into a registry."""

    pass
