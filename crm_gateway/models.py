"""
Pydantic Models for the CRM Contacts Gateway

This module defines the closed request schemas for every forwarded
operation and the helpers that turn raw caller input into them.

MULTI-TENANT SECURITY:
- Every schema forbids unknown fields (extra="forbid")
- businessId is NOT a field of any schema, so a caller that tries to
  supply one is rejected with 400 instead of being silently overridden
- The resolved tenant is merged in by the forwarder after validation

TYPING:
- Scalars are strict: no string-to-int or number-to-string coercion
- Optional fields may be omitted but not sent as null; only a field's
  value may be null
"""

import json
import re
from typing import Any, Dict, List, Literal, Mapping, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError

from .exceptions import PayloadValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)

_INTEGER_PATTERN = re.compile(r"[+-]?[0-9]+")


class _ClosedModel(BaseModel):
    """Whitelist base: camelCase wire names, unknown fields rejected."""
    model_config = ConfigDict(extra="forbid")


# =============================================================================
# CONTACT FIELD
# =============================================================================

class ContactField(_ClosedModel):
    """
    A single CRM field assignment.

    Attributes:
        id: CRM field identifier (e.g. 'standard__email')
        value: Any JSON value; the CRM validates field types itself
        operation: Write policy for the field
    """
    id: StrictStr = Field(..., min_length=1, description="CRM field identifier")
    value: Any = Field(None, description="Field value")
    operation: Literal["always_overwrite", "set_if_empty"] = Field(
        None, description="Write policy"
    )


# =============================================================================
# REQUEST MODELS
# =============================================================================

class ContactCreateRequest(_ClosedModel):
    """
    Body of POST /api/contacts.

    Tenant identity is NOT included: it is resolved from x-client-key.
    """
    subtype: StrictStr = None
    fields: List[ContactField] = Field(..., min_length=1)
    search_existing: List[StrictStr] = Field(None, alias="searchExisting")
    return_fields: List[StrictStr] = Field(None, alias="returnFields")

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "fields": [{"id": "standard__email", "value": "a@b.com"}],
                "searchExisting": ["standard__email"],
            }
        }
    )


class ContactUpdateRequest(_ClosedModel):
    """Body of PUT /api/contacts/update."""
    contact_id: StrictStr = Field(..., min_length=1, alias="contactId")
    subtype: StrictStr = None
    fields: List[ContactField] = Field(..., min_length=1)
    return_fields: List[StrictStr] = Field(None, alias="returnFields")


class ContactFetchRequest(_ClosedModel):
    """Query (GET) or body (POST) of /api/contacts/get. Every field is optional."""
    contact_id: StrictStr = Field(None, alias="contactId")
    filters: Dict[str, Any] = None
    return_fields: List[StrictStr] = Field(None, alias="returnFields")
    limit: StrictInt = Field(None, ge=1, le=1000)
    offset: StrictInt = Field(None, ge=0)
    sort_by: StrictStr = Field(None, alias="sortBy")
    sort_order: Literal["asc", "desc"] = Field(None, alias="sortOrder")


# =============================================================================
# VALIDATION HELPERS
# =============================================================================

def _first_violation(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    if error.get("type") == "extra_forbidden":
        return f"Unrecognized field: {location}"
    return f"{location}: {error.get('msg')}" if location else str(error.get("msg"))


def validate_payload(model: Type[ModelT], raw: Any) -> ModelT:
    """
    Validate raw caller input against a closed schema.

    Raises:
        PayloadValidationError: Naming the first violation
    """
    if not isinstance(raw, dict):
        raise PayloadValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise PayloadValidationError(_first_violation(exc)) from exc


def to_upstream_payload(payload: BaseModel) -> Dict[str, Any]:
    """Dump only what the caller supplied, using the CRM's wire names."""
    return payload.model_dump(by_alias=True, exclude_unset=True)


def _parse_int(name: str, raw: str) -> int:
    # int() alone would also take "1_0" and non-ASCII digits
    raw = raw.strip()
    if not _INTEGER_PATTERN.fullmatch(raw):
        raise PayloadValidationError(f"{name}: must be an integer")
    return int(raw, 10)


def fetch_params_from_query(query: Mapping[str, str]) -> Dict[str, Any]:
    """
    Coerce query-string parameters into fetch-schema types.

    limit/offset are parsed as integers, returnFields is comma-split and
    filters is JSON-decoded. Empty values count as absent. Anything else is
    passed through as a string so the closed schema can reject it.
    """
    params: Dict[str, Any] = {}
    for name, raw in query.items():
        if raw == "" and name in ("limit", "offset", "returnFields", "filters"):
            continue
        if name in ("limit", "offset"):
            params[name] = _parse_int(name, raw)
        elif name == "returnFields":
            params[name] = raw.split(",")
        elif name == "filters":
            try:
                params[name] = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise PayloadValidationError(f"filters: invalid JSON ({exc.msg})") from exc
        else:
            params[name] = raw
    return params
