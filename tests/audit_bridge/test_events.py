"""Tests for audit event decoding and classification."""

import json
from uuid import UUID

import pytest

from core.errors.exceptions import (
    DecodeError,
    InvalidAccountEvent,
    InvalidProjectEvent,
    MalformedPayload,
    MissingDiscriminatorKey,
    NotAnObject,
)

from audit_bridge.events import (
    U64_MAX,
    AccountEvent,
    EventKind,
    ProjectEvent,
    classify,
    decode,
    decode_object,
    parse_payload,
    validate_account_event,
    validate_project_event,
)

PROJECT_ID = "7b0c3f2e-9d4a-4c1b-8e2f-1a2b3c4d5e6f"


def _encode(obj) -> bytes:
    return json.dumps(obj).encode("utf-8")


def _project_payload(**extra):
    return {"ProjectId": PROJECT_ID, "EntityType": "Document", "EntityId": "doc-1", **extra}


class TestClassify:
    def test_project(self):
        assert classify({"ProjectId": "x"}) is EventKind.PROJECT

    def test_account(self):
        assert classify({"AccountId": 1}) is EventKind.ACCOUNT

    def test_project_wins_over_account(self):
        assert classify({"AccountId": 1, "ProjectId": "x"}) is EventKind.PROJECT

    def test_neither(self):
        with pytest.raises(MissingDiscriminatorKey):
            classify({"Action": "login"})

    def test_presence_not_value(self):
        """A null ProjectId still selects the project schema."""
        assert classify({"ProjectId": None}) is EventKind.PROJECT


class TestDecodeProject:
    def test_basic(self):
        event = decode(_encode(_project_payload(Action="Created", Size=12)))

        assert isinstance(event, ProjectEvent)
        assert event.project_id == UUID(PROJECT_ID)
        assert event.entity_type == "Document"
        assert event.entity_id == "doc-1"
        assert event.extra == {"Action": "Created", "Size": 12}
        assert event.kind is EventKind.PROJECT
        assert event.partition_key == PROJECT_ID

    def test_extra_preserves_order_and_skips_hoisted(self):
        payload = {"Z": 1, "ProjectId": PROJECT_ID, "A": 2, "EntityType": "t", "M": 3, "EntityId": "i"}
        event = decode(_encode(payload))
        assert list(event.extra) == ["Z", "A", "M"]

    def test_account_id_in_project_event_kept_in_extra(self):
        event = decode(_encode(_project_payload(AccountId=42)))
        assert isinstance(event, ProjectEvent)
        assert event.extra == {"AccountId": 42}

    def test_nested_extras_verbatim(self):
        event = decode(_encode(_project_payload(Meta={"tags": ["a", None], "n": 1.5})))
        assert event.extra["Meta"] == {"tags": ["a", None], "n": 1.5}

    @pytest.mark.parametrize(
        "payload",
        [
            {"ProjectId": "not-a-uuid", "EntityType": "t", "EntityId": "i"},
            {"ProjectId": PROJECT_ID, "EntityType": "t"},
            {"ProjectId": PROJECT_ID, "EntityType": 5, "EntityId": "i"},
            {"ProjectId": None, "EntityType": "t", "EntityId": "i"},
            {"ProjectId": 12, "EntityType": "t", "EntityId": "i"},
        ],
    )
    def test_invalid(self, payload):
        with pytest.raises(InvalidProjectEvent) as exc_info:
            decode(_encode(payload))
        assert exc_info.value.context["errors"]

    def test_invalid_project_does_not_fall_back_to_account(self):
        payload = {"ProjectId": "nope", "AccountId": 1}
        with pytest.raises(InvalidProjectEvent):
            decode(_encode(payload))


class TestDecodeAccount:
    def test_basic(self):
        event = decode(b'{"AccountId": 42, "Action": "login"}')

        assert isinstance(event, AccountEvent)
        assert event.account_id == 42
        assert event.extra == {"Action": "login"}
        assert event.kind is EventKind.ACCOUNT
        assert event.partition_key == "42"

    def test_u64_bounds(self):
        assert decode(_encode({"AccountId": 0})).account_id == 0
        assert decode(_encode({"AccountId": U64_MAX})).account_id == U64_MAX

    @pytest.mark.parametrize(
        "account_id",
        [-1, U64_MAX + 1, "42", 4.2, True, None, [1]],
    )
    def test_invalid(self, account_id):
        with pytest.raises(InvalidAccountEvent):
            decode(_encode({"AccountId": account_id}))


class TestDecodeErrors:
    @pytest.mark.parametrize(
        "payload",
        [
            b"",
            b"{",
            b'{"AccountId": 1',
            b"not json",
            b"\xff\xfe\x00",
            b'{"AccountId": NaN}',
            b'{"AccountId": 1, "x": Infinity}',
            b"[" * 100_000 + b"]" * 100_000,
            b'{"AccountId": 1, "x": ' + b"[" * 100_000 + b"]" * 100_000 + b"}",
            b'{"AccountId": 1, "x": 1e400}',
            b'{"AccountId": 1, "x": -1e400}',
            b'{"AccountId": 1, "x": "\\ud800"}',
            b'{"AccountId": 1, "x": ["ok", "\\udfff"]}',
            b'{"AccountId": 1, "\\ud83d": true}',
            b'\xef\xbb\xbf{"AccountId": 1}',
        ],
    )
    def test_malformed(self, payload):
        with pytest.raises(MalformedPayload):
            decode(payload)

    @pytest.mark.parametrize("payload", [b"[]", b"42", b'"text"', b"null", b"true"])
    def test_not_an_object(self, payload):
        with pytest.raises(NotAnObject):
            decode(payload)

    def test_missing_discriminator(self):
        with pytest.raises(MissingDiscriminatorKey):
            decode(b'{"EntityType": "t", "EntityId": "i"}')

    def test_empty_object(self):
        with pytest.raises(MissingDiscriminatorKey):
            decode(b"{}")

    def test_all_errors_are_decode_errors(self):
        for payload in (b"{", b"[]", b"{}", b'{"AccountId": -5}', b'{"ProjectId": 1}'):
            with pytest.raises(DecodeError):
                decode(payload)


class TestDecodeProperties:
    def test_deterministic(self):
        payload = _encode(_project_payload(Action="x"))
        assert decode(payload) == decode(payload)

    def test_deterministic_errors(self):
        errors = set()
        for _ in range(3):
            try:
                decode(b'{"AccountId": "7"}')
            except DecodeError as e:
                errors.add(type(e))
        assert errors == {InvalidAccountEvent}

    @pytest.mark.parametrize(
        "payload",
        [
            _project_payload(Action="Created", Nested={"a": [1, 2]}),
            {"AccountId": 7, "Action": "login", "Where": "Zürich"},
            {"AccountId": U64_MAX},
        ],
    )
    def test_encode_round_trip(self, payload):
        event = decode(_encode(payload))
        assert decode(event.encode()) == event
        assert event.to_payload() == payload

    @pytest.mark.parametrize(
        "payload, expected",
        [
            ('{"AccountId": 1, "x": "\U0001f600"}'.encode("utf-8"), "\U0001f600"),
            (b'{"AccountId": 1, "x": "\\ud83d\\ude00"}', "\U0001f600"),
            (b'{"AccountId": 1, "x": 1e308}', 1e308),
            (b'{"AccountId": 1, "x": 1e-400}', 0.0),
            (b'{"AccountId": 1, "x": 10000000000000000000000000000000000000000}', 10**40),
        ],
    )
    def test_edge_values_round_trip(self, payload, expected):
        event = decode(payload)
        assert event.extra["x"] == expected
        assert decode(event.encode()) == event

    def test_equality_is_structural(self):
        a = ProjectEvent(project_id=UUID(PROJECT_ID), entity_type="t", entity_id="i", extra={})
        b = decode(_encode({"ProjectId": PROJECT_ID, "EntityType": "t", "EntityId": "i"}))
        assert a == b

    def test_events_are_immutable(self):
        event = decode(b'{"AccountId": 1}')
        with pytest.raises(Exception):
            event.account_id = 2

    def test_extra_is_read_only(self):
        event = decode(b'{"AccountId": 1, "Action": "login"}')
        with pytest.raises(TypeError):
            event.extra["Action"] = "logout"
        assert event.extra == {"Action": "login"}
        assert decode(event.encode()) == event


class TestStepFunctions:
    def test_parse_payload(self):
        assert parse_payload(b'{"a": 1}') == {"a": 1}

    def test_validate_functions_independent_of_classify(self):
        assert validate_account_event({"AccountId": 5}).account_id == 5
        assert validate_project_event(_project_payload()).entity_id == "doc-1"

    def test_decode_object(self):
        assert decode_object({"AccountId": 5}) == AccountEvent(account_id=5, extra={})
