"""
Domain models for the US Census metadata loader.

Defines the record shapes persisted to `db/init.sql`: one row per variable of
an endpoint (`variables.json`), one row per geography level (`geography.json`
`fips` entries) and one row per endpoint of the catalog (`data.json`).

Models are frozen and strict: values that need normalization are routed
through the decoders in `us_census.parsing.decoders`, and anything else must
already have the declared type.
"""
from __future__ import annotations

from datetime import date
from typing import Annotated, Any, List, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from us_census.parsing.decoders import (
    decode_limit,
    decode_reference_date,
    decode_wildcard,
    split_comma_separated,
    split_label,
)

SMALLINT_MIN = -32_768
SMALLINT_MAX = 32_767
INT_MIN = -2_147_483_648
INT_MAX = 2_147_483_647

SmallInt = Annotated[int, Field(ge=SMALLINT_MIN, le=SMALLINT_MAX)]
PgInt = Annotated[int, Field(ge=INT_MIN, le=INT_MAX)]

_RECORD_CONFIG = {
    "frozen": True,
    "strict": True,
    "populate_by_name": True,
    "extra": "ignore",
}


class VariableRecord(BaseModel):
    """
    A single variable of an API endpoint, i.e. one entry of `variables.json`.
    """

    name: str = Field(..., description="Variable name; the key in `variables.json`.")
    label: List[str] = Field(..., description="Label split on '!!'.")
    concept: Optional[str] = None
    required: Optional[str] = None
    predicate_type: Optional[str] = Field(None, alias="predicateType")
    group: Optional[List[str]] = None
    limit: Optional[SmallInt] = None
    predicate_only: Optional[bool] = Field(None, alias="predicateOnly")
    attributes: Optional[List[str]] = None

    model_config = _RECORD_CONFIG

    @field_validator("label", mode="before")
    @classmethod
    def _split_label(cls, value: Any) -> List[str]:
        return split_label(value)

    @field_validator("group", "attributes", mode="before")
    @classmethod
    def _split_comma_separated(cls, value: Any, info: ValidationInfo) -> Optional[List[str]]:
        return split_comma_separated(value, field_name=info.field_name)


class GeographyRecord(BaseModel):
    """
    A geography level supported by an API endpoint (one `fips` entry).
    """

    name: str
    geo_level_display: Optional[str] = Field(None, alias="geoLevelDisplay")
    reference_date: Optional[date] = Field(None, alias="referenceDate")
    requires: Optional[List[str]] = None
    wildcard: Optional[List[str]] = None
    limit: Optional[PgInt] = None
    geo_level_id: Optional[str] = Field(None, alias="geoLevelId")
    optional_with_wildcard_for: Optional[str] = Field(None, alias="optionalWithWCFor")

    model_config = _RECORD_CONFIG

    @field_validator("reference_date", mode="before")
    @classmethod
    def _decode_reference_date(cls, value: Any) -> Optional[date]:
        return decode_reference_date(value)

    @field_validator("wildcard", mode="before")
    @classmethod
    def _decode_wildcard(cls, value: Any) -> Optional[List[str]]:
        return decode_wildcard(value)

    @field_validator("limit", mode="before")
    @classmethod
    def _decode_limit(cls, value: Any) -> Optional[int]:
        return decode_limit(value)


class ApiPath(BaseModel):
    """
    Metadata of one US Census API endpoint, as listed in
    https://api.census.gov/data.json.

    `id` is assigned by the database and is None until the row is persisted.
    """

    id: Optional[int] = None
    c_vintage: Optional[int] = None
    c_dataset: List[str] = Field(default_factory=list)
    c_geography_link: str = Field(..., alias="c_geographyLink")
    c_variables_link: str = Field(..., alias="c_variablesLink")
    title: str
    description: str

    model_config = _RECORD_CONFIG


__all__ = [
    "VariableRecord",
    "GeographyRecord",
    "ApiPath",
    "SMALLINT_MIN",
    "SMALLINT_MAX",
    "INT_MIN",
    "INT_MAX",
]
