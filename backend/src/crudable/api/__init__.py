"""HTTP API."""

from crudable.api.app import app

__all__ = ["app"]
