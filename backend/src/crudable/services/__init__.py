"""Query services."""

from crudable.services.calendar import DATE_RANGE_FIELD, format_date_range
from crudable.services.tables import TableQueryService, compute_stats, flatten_relations

__all__ = [
    "DATE_RANGE_FIELD",
    "TableQueryService",
    "compute_stats",
    "flatten_relations",
    "format_date_range",
]
