"""
Unit tests for /convert request parsing.
"""

import pytest

from conftest import DESTINATION_URL, SOURCE_URL, UNSIGNED_DESTINATION_URL, WEBHOOK_URL, conversion_payload
from pdfconvert.utils.error_handling import ErrorCode, RequestValidationError
from pdfconvert.utils.request_validator import ConversionRequest, parse_conversion_request
from pdfconvert.utils.url_validator import TrustMode, URLValidator


@pytest.fixture
def validator():
    return URLValidator(TrustMode.STRICT)


def test_valid_request(validator):
    request = parse_conversion_request(conversion_payload(webhook=WEBHOOK_URL), validator)
    assert request == ConversionRequest(
        source=SOURCE_URL, destination=DESTINATION_URL, unique_id="job-1", webhook=WEBHOOK_URL
    )


def test_webhook_is_optional(validator):
    assert parse_conversion_request(conversion_payload(), validator).webhook is None
    assert parse_conversion_request(conversion_payload(webhook=""), validator).webhook is None


def test_request_is_immutable(validator):
    request = parse_conversion_request(conversion_payload(), validator)
    with pytest.raises(AttributeError):
        request.unique_id = "other"


@pytest.mark.parametrize("payload", [None, [], "string", 42])
def test_body_must_be_object(validator, payload):
    with pytest.raises(RequestValidationError) as exc_info:
        parse_conversion_request(payload, validator)
    assert exc_info.value.status_code == 400


@pytest.mark.parametrize("field", ["source", "destination", "unique_id"])
def test_missing_required_field(validator, field):
    payload = conversion_payload()
    del payload[field]
    with pytest.raises(RequestValidationError) as exc_info:
        parse_conversion_request(payload, validator)
    assert exc_info.value.message == f"Missing required field: {field}"
    assert exc_info.value.error_code is ErrorCode.MISSING_PARAMETER


@pytest.mark.parametrize("unique_id", [
    "a/b", "..", "../etc", "job 1", "job.1", "jöb", "id;rm", "%2e%2e",
    " job-1", "job-1 ", "job-1\n", "\tjob-1",
])
def test_invalid_unique_id(validator, unique_id):
    with pytest.raises(RequestValidationError) as exc_info:
        parse_conversion_request(conversion_payload(unique_id=unique_id), validator)
    assert "Invalid unique_id format" in exc_info.value.message


def test_non_string_unique_id(validator):
    with pytest.raises(RequestValidationError) as exc_info:
        parse_conversion_request(conversion_payload(unique_id=123), validator)
    assert exc_info.value.error_code is ErrorCode.INVALID_PARAMETER


def test_unsigned_destination_mentions_destination(validator):
    with pytest.raises(RequestValidationError) as exc_info:
        parse_conversion_request(conversion_payload(destination=UNSIGNED_DESTINATION_URL), validator)
    assert "destination" in exc_info.value.message
    assert exc_info.value.error_code is ErrorCode.INVALID_URL


def test_invalid_source(validator):
    with pytest.raises(RequestValidationError) as exc_info:
        parse_conversion_request(conversion_payload(source="https://example.com/doc.pdf"), validator)
    assert exc_info.value.message.startswith("Invalid source URL")


def test_internal_webhook_rejected(validator):
    with pytest.raises(RequestValidationError) as exc_info:
        parse_conversion_request(conversion_payload(webhook="https://127.0.0.1/hook"), validator)
    assert exc_info.value.message.startswith("Invalid webhook URL")


def test_unique_id_checked_before_urls(validator):
    payload = conversion_payload(unique_id="../x", source="nonsense")
    with pytest.raises(RequestValidationError) as exc_info:
        parse_conversion_request(payload, validator)
    assert "unique_id" in exc_info.value.message
