"""
Parsing and validation of the /convert request body.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .error_handling import ErrorCode, RequestValidationError
from .url_validator import URLValidator

UNIQUE_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]+")
REQUIRED_FIELDS = ("source", "destination", "unique_id")


@dataclass(frozen=True)
class ConversionRequest:
    source: str
    destination: str
    unique_id: str
    webhook: Optional[str] = None


def is_valid_unique_id(value: Any) -> bool:
    return isinstance(value, str) and UNIQUE_ID_PATTERN.fullmatch(value) is not None


def _require_string(payload: Dict[str, Any], name: str) -> str:
    value = payload.get(name)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise RequestValidationError(f"Missing required field: {name}", ErrorCode.MISSING_PARAMETER)
    if not isinstance(value, str):
        raise RequestValidationError(f"Field '{name}' must be a string", ErrorCode.INVALID_PARAMETER)
    return value.strip()


def parse_conversion_request(payload: Any, validator: URLValidator) -> ConversionRequest:
    """
    Build a ConversionRequest from a decoded JSON body.

    Raises:
        RequestValidationError: naming the first field that is missing or
            invalid; the unique_id is checked first, then source, destination
            and webhook.
    """
    if not isinstance(payload, dict):
        raise RequestValidationError("Request body must be a JSON object", ErrorCode.INVALID_REQUEST)

    _require_string(payload, "unique_id")
    # Checked unstripped: surrounding whitespace is an invalid character
    unique_id = payload["unique_id"]
    if not is_valid_unique_id(unique_id):
        raise RequestValidationError(
            "Invalid unique_id format: only letters, digits, '-' and '_' are allowed",
            ErrorCode.INVALID_PARAMETER,
        )

    source = _require_string(payload, "source")
    result = validator.validate_source(source)
    if not result:
        raise RequestValidationError(f"Invalid source URL: {result.reason}", ErrorCode.INVALID_URL)

    destination = _require_string(payload, "destination")
    result = validator.validate_destination(destination)
    if not result:
        raise RequestValidationError(f"Invalid destination URL: {result.reason}", ErrorCode.INVALID_URL)

    webhook = payload.get("webhook")
    if webhook is not None and webhook != "":
        if not isinstance(webhook, str):
            raise RequestValidationError("Field 'webhook' must be a string", ErrorCode.INVALID_PARAMETER)
        webhook = webhook.strip()
        result = validator.validate_webhook(webhook)
        if not result:
            raise RequestValidationError(f"Invalid webhook URL: {result.reason}", ErrorCode.INVALID_URL)
    else:
        webhook = None

    return ConversionRequest(source=source, destination=destination, unique_id=unique_id, webhook=webhook)
