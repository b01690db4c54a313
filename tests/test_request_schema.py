import pytest

from shared.errors import ProtocolError, ValidationError
from shared.request_schema import (
    NotificationRequest,
    RequestConstraints,
    decode_json_object,
    validate_notification_request,
)


def test_minimal_request_is_accepted() -> None:
    request = validate_notification_request({"title": "Build", "content": "**done**"})
    assert request == NotificationRequest(title="Build", content="**done**")


def test_all_fields_are_carried_and_unknown_fields_ignored() -> None:
    request = validate_notification_request(
        {
            "title": "T",
            "content": "C",
            "timeout": 1500,
            "broadcast": True,
            "senderInstanceId": "abc",
            "key": "secret",
            "priority": "high",
        }
    )
    assert request.timeout_ms == 1500
    assert request.broadcast is True
    assert request.sender_instance_id == "abc"
    assert request.key == "secret"


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"content": "c"}, "title is required"),
        ({"title": "t"}, "content is required"),
        ({"title": 5, "content": "c"}, "title must be a string"),
        ({"title": "t", "content": ""}, "content must be a non-empty string"),
    ],
)
def test_missing_or_bad_text_fields_are_rejected(payload, message) -> None:
    with pytest.raises(ValidationError, match=message):
        validate_notification_request(payload)


@pytest.mark.parametrize("timeout", [-1, True, "soon", 1.5, float("inf"), [100]])
def test_invalid_timeouts_are_rejected(timeout) -> None:
    with pytest.raises(ValidationError):
        validate_notification_request({"title": "t", "content": "c", "timeout": timeout})


def test_timeout_accepts_integral_values_and_caps_at_one_day() -> None:
    assert validate_notification_request({"title": "t", "content": "c", "timeout": 2000.0}).timeout_ms == 2000
    assert validate_notification_request({"title": "t", "content": "c", "timeout": "750"}).timeout_ms == 750
    huge = validate_notification_request({"title": "t", "content": "c", "timeout": 10**12})
    assert huge.timeout_ms == RequestConstraints().max_timeout_ms


def test_validation_errors_are_value_errors() -> None:
    with pytest.raises(ValueError):
        validate_notification_request({})


def test_decode_json_object_requires_an_object_root() -> None:
    assert decode_json_object(b'{"a": 1}') == {"a": 1}
    with pytest.raises(ProtocolError, match="root must be an object"):
        decode_json_object(b"[1, 2]")
    with pytest.raises(ProtocolError, match="Invalid JSON"):
        decode_json_object(b"{not json")
    with pytest.raises(ProtocolError, match="UTF-8"):
        decode_json_object(b"\xff\xfe")


def test_to_wire_omits_unset_optionals() -> None:
    request = NotificationRequest(title="T", content="C")
    assert request.to_wire() == {"title": "T", "content": "C", "broadcast": False}

    stamped = NotificationRequest(title="T", content="C", timeout_ms=0, sender_instance_id="me", key="k")
    assert stamped.to_wire() == {
        "title": "T",
        "content": "C",
        "broadcast": False,
        "timeout": 0,
        "senderInstanceId": "me",
        "key": "k",
    }


def test_whitespace_only_text_is_still_a_non_empty_string() -> None:
    request = validate_notification_request({"title": " ", "content": "\n"})
    assert (request.title, request.content) == (" ", "\n")
