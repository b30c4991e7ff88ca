"""
Audit event schemas and the record decoder.

A stream record payload is a JSON object classified by which identifier it
carries:

    {"ProjectId": "<uuid>", "EntityType": "...", "EntityId": "...", ...extras}
    {"AccountId": <u64>, ...extras}

ProjectId wins when both identifiers are present. Every key that is not
hoisted into a named field is kept, in its original order, in ``extra``, a
read-only mapping.

Payloads must survive a round trip through encode(), so parsing is stricter
than json.loads: numbers that overflow a float (1e400), lone UTF-16
surrogate escapes ("\\ud800") and NaN/Infinity are all MalformedPayload.

Example:
    >>> event = decode(b'{"AccountId": 42, "Action": "login"}')
    >>> event.account_id, dict(event.extra)
    (42, {'Action': 'login'})
"""

import json
import math
from collections.abc import Mapping
from enum import Enum
from types import MappingProxyType
from typing import Any, Union
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    ValidationError,
    field_validator,
)

from core.errors.exceptions import (
    InvalidAccountEvent,
    InvalidProjectEvent,
    MalformedPayload,
    MissingDiscriminatorKey,
    NotAnObject,
)

PROJECT_ID_KEY = "ProjectId"
ENTITY_TYPE_KEY = "EntityType"
ENTITY_ID_KEY = "EntityId"
ACCOUNT_ID_KEY = "AccountId"

PROJECT_KEYS = (PROJECT_ID_KEY, ENTITY_TYPE_KEY, ENTITY_ID_KEY)
ACCOUNT_KEYS = (ACCOUNT_ID_KEY,)

U64_MAX = 2**64 - 1


def _read_only(extra: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(extra))


class EventKind(str, Enum):
    PROJECT = "project"
    ACCOUNT = "account"


class ProjectEvent(BaseModel):
    """Change to an entity inside a project."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    project_id: UUID = Field(..., alias=PROJECT_ID_KEY)
    entity_type: StrictStr = Field(..., alias=ENTITY_TYPE_KEY)
    entity_id: StrictStr = Field(..., alias=ENTITY_ID_KEY)
    extra: Mapping[str, Any] = Field(default_factory=dict, validate_default=True)

    @field_validator("extra")
    @classmethod
    def freeze_extra(cls, v: Mapping[str, Any]) -> Mapping[str, Any]:
        return _read_only(v)

    @property
    def kind(self) -> EventKind:
        return EventKind.PROJECT

    @property
    def partition_key(self) -> str:
        return str(self.project_id)

    def to_payload(self) -> dict[str, Any]:
        """Rebuild the wire object: hoisted keys first, then extras."""
        return {
            PROJECT_ID_KEY: str(self.project_id),
            ENTITY_TYPE_KEY: self.entity_type,
            ENTITY_ID_KEY: self.entity_id,
            **self.extra,
        }

    def encode(self) -> bytes:
        return json.dumps(self.to_payload(), ensure_ascii=False).encode("utf-8")


class AccountEvent(BaseModel):
    """Account-level event, not tied to a project."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    account_id: StrictInt = Field(..., alias=ACCOUNT_ID_KEY, ge=0, le=U64_MAX)
    extra: Mapping[str, Any] = Field(default_factory=dict, validate_default=True)

    @field_validator("extra")
    @classmethod
    def freeze_extra(cls, v: Mapping[str, Any]) -> Mapping[str, Any]:
        return _read_only(v)

    @property
    def kind(self) -> EventKind:
        return EventKind.ACCOUNT

    @property
    def partition_key(self) -> str:
        return str(self.account_id)

    def to_payload(self) -> dict[str, Any]:
        return {ACCOUNT_ID_KEY: self.account_id, **self.extra}

    def encode(self) -> bytes:
        return json.dumps(self.to_payload(), ensure_ascii=False).encode("utf-8")


AuditEvent = Union[ProjectEvent, AccountEvent]


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Non-standard JSON constant: {name}")


def _finite_float(literal: str) -> float:
    value = float(literal)
    if not math.isfinite(value):
        raise ValueError(f"Number out of range: {literal}")
    return value


def _check_strings(value: Any) -> None:
    """Raise UnicodeEncodeError for any key or string holding a lone surrogate."""
    pending = [value]
    while pending:
        item = pending.pop()
        if isinstance(item, str):
            item.encode("utf-8")
        elif isinstance(item, dict):
            pending.extend(item.keys())
            pending.extend(item.values())
        elif isinstance(item, list):
            pending.extend(item)


def parse_payload(payload: bytes) -> Any:
    """Parse record bytes as strict UTF-8 JSON.

    Raises:
        MalformedPayload: Bytes are not UTF-8 or not JSON, the document is
            too deeply nested, a number overflows a float, or a string
            escape decodes to a lone surrogate
    """
    try:
        text = bytes(payload).decode("utf-8")
        obj = json.loads(text, parse_constant=_reject_constant, parse_float=_finite_float)
        _check_strings(obj)
        return obj
    except (UnicodeDecodeError, ValueError, RecursionError) as e:
        raise MalformedPayload(f"Payload is not valid JSON: {e}", cause=e) from e


def classify(obj: dict[str, Any]) -> EventKind:
    """Pick the event variant from which identifier key is present.

    Raises:
        MissingDiscriminatorKey: Neither ProjectId nor AccountId is present
    """
    if PROJECT_ID_KEY in obj:
        return EventKind.PROJECT
    if ACCOUNT_ID_KEY in obj:
        return EventKind.ACCOUNT
    raise MissingDiscriminatorKey()


def _split(obj: dict[str, Any], keys: tuple[str, ...]) -> dict[str, Any]:
    fields = {key: obj[key] for key in keys if key in obj}
    fields["extra"] = {key: value for key, value in obj.items() if key not in keys}
    return fields


def validate_project_event(obj: dict[str, Any]) -> ProjectEvent:
    """Validate a classified object against the project event schema.

    Raises:
        InvalidProjectEvent: Missing or mistyped ProjectId/EntityType/EntityId
    """
    try:
        return ProjectEvent.model_validate(_split(obj, PROJECT_KEYS))
    except ValidationError as e:
        raise InvalidProjectEvent(
            f"Invalid project event: {e.error_count()} validation error(s)",
            cause=e,
            context={"errors": e.errors(include_url=False, include_input=False)},
        ) from e


def validate_account_event(obj: dict[str, Any]) -> AccountEvent:
    """Validate a classified object against the account event schema.

    Raises:
        InvalidAccountEvent: AccountId is not an integer in the u64 range
    """
    try:
        return AccountEvent.model_validate(_split(obj, ACCOUNT_KEYS))
    except ValidationError as e:
        raise InvalidAccountEvent(
            f"Invalid account event: {e.error_count()} validation error(s)",
            cause=e,
            context={"errors": e.errors(include_url=False, include_input=False)},
        ) from e


def decode_object(obj: Any) -> AuditEvent:
    """Classify and validate an already-parsed JSON value."""
    if not isinstance(obj, dict):
        raise NotAnObject(f"Payload is a JSON {type(obj).__name__}, expected an object")

    if classify(obj) is EventKind.PROJECT:
        return validate_project_event(obj)
    return validate_account_event(obj)


def decode(payload: bytes) -> AuditEvent:
    """Turn raw record bytes into an audit event.

    Pure and deterministic: the same bytes always give an equal event or the
    same error type.

    Raises:
        MalformedPayload: Not UTF-8 JSON
        NotAnObject: JSON value is not an object
        MissingDiscriminatorKey: No ProjectId or AccountId
        InvalidProjectEvent / InvalidAccountEvent: Schema mismatch
    """
    return decode_object(parse_payload(payload))


__all__ = [
    "AuditEvent",
    "AccountEvent",
    "EventKind",
    "ProjectEvent",
    "classify",
    "decode",
    "decode_object",
    "parse_payload",
    "validate_account_event",
    "validate_project_event",
]
