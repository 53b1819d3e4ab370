"""Crudable: schema-driven table access with role-aware relation loading."""

__version__ = "0.1.0"
