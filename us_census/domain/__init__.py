"""
Domain package for the US Census metadata loader.

Exports the record models shared by the parsers, the storage layer and the
ingestion coordinator. Keep this package focused on data definitions and
validation concerns.
"""

from us_census.domain.models import ApiPath, GeographyRecord, VariableRecord

__all__ = [
    "ApiPath",
    "GeographyRecord",
    "VariableRecord",
]
