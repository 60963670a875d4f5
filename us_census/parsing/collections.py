"""
Parsers turning raw Census API metadata documents into record lists.

- `parse_variables`: `variables.json`, an object keyed by variable name.
- `parse_geography`: `geography.json`, records under the `fips` array.
- `parse_catalog`: `data.json`, endpoint descriptors under `dataset`.

All parsers accept `str` or `bytes` and raise DecodeError on any structural
mismatch; pydantic validation errors are translated so callers only deal with
one error type.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from us_census.domain.models import ApiPath, GeographyRecord, VariableRecord
from us_census.exceptions import DecodeError
from us_census.utils.logging import get_logger

log = get_logger(__name__)

RawDocument = Union[str, bytes, bytearray]
ModelT = TypeVar("ModelT", bound=BaseModel)

_EXCERPT_CHARS = 200


def _load_object(raw: RawDocument, document: str) -> Dict[str, Any]:
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        excerpt = raw[:_EXCERPT_CHARS]
        raise DecodeError(f"{document} is not valid JSON: {exc}", value=excerpt) from exc
    if not isinstance(payload, dict):
        raise DecodeError(
            f"{document} must be a JSON object, got {type(payload).__name__}", value=payload
        )
    return payload


def _build(model: Type[ModelT], payload: Any, context: str) -> ModelT:
    """Validate one entry; every failure surfaces as a DecodeError naming `context`."""
    if not isinstance(payload, Mapping):
        raise DecodeError(
            f"{context} must be a JSON object, got {type(payload).__name__}", value=payload
        )
    try:
        return model.model_validate(payload)
    except DecodeError as exc:
        # field decoders raise DecodeError directly, without the entry context
        raise DecodeError(f"{context}: {exc}", value=exc.value, field=exc.field) from exc
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise DecodeError(
            f"{context}: field {field!r}: {first.get('msg')}",
            value=first.get("input"),
            field=field,
        ) from exc


def parse_variables(raw: RawDocument) -> List[VariableRecord]:
    """
    Parse a `variables.json` document.

    The `variables` member maps each variable name to the object describing
    it. The map key becomes the record's `name`, overriding any `name` nested
    in the object. Records keep the decoded mapping's order.
    """
    document = _load_object(raw, "variables.json")
    if "variables" not in document:
        raise DecodeError("variables.json has no 'variables' member", field="variables")
    variables = document["variables"]
    if not isinstance(variables, dict):
        raise DecodeError(
            f"'variables' must be an object keyed by variable name, got {type(variables).__name__}",
            value=variables,
            field="variables",
        )

    records: List[VariableRecord] = []
    for name, attributes in variables.items():
        if not isinstance(attributes, dict):
            raise DecodeError(
                f"variable {name!r} must be a JSON object, got {type(attributes).__name__}",
                value=attributes,
                field=name,
            )
        records.append(_build(VariableRecord, {**attributes, "name": name}, f"variable {name!r}"))

    log.debug("Parsed variables document", extra={"variables": len(records)})
    return records


def parse_geography(raw: RawDocument) -> List[GeographyRecord]:
    """
    Parse a `geography.json` document. A document without `fips` has no
    geography levels and yields an empty list.
    """
    document = _load_object(raw, "geography.json")
    if "fips" not in document:
        return []
    fips = document["fips"]
    if not isinstance(fips, list):
        raise DecodeError(
            f"'fips' must be an array, got {type(fips).__name__}", value=fips, field="fips"
        )

    records = [_build(GeographyRecord, entry, f"fips[{i}]") for i, entry in enumerate(fips)]
    log.debug("Parsed geography document", extra={"geographies": len(records)})
    return records


def parse_catalog(raw: RawDocument) -> List[ApiPath]:
    """Parse the `data.json` catalog into one ApiPath per listed endpoint."""
    document = _load_object(raw, "data.json")
    datasets = document.get("dataset")
    if not isinstance(datasets, list):
        raise DecodeError(
            "data.json must contain a 'dataset' array", value=datasets, field="dataset"
        )
    return [_build(ApiPath, entry, f"dataset[{i}]") for i, entry in enumerate(datasets)]


__all__ = ["parse_variables", "parse_geography", "parse_catalog"]
