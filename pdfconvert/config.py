"""
Service configuration for the PDF converter.

All settings are read from the environment once, when the application starts,
and handed to the components that need them. Nothing below the app factory
reads environment variables directly.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .utils.url_validator import TrustMode

# Defaults
DEFAULT_SECRET_NAME = "pdf-converter/jwt-secret"
DEFAULT_AWS_REGION = "us-east-1"
DEFAULT_WORK_DIR = "/tmp/pdf-converter"
DEFAULT_MAX_PAGES = 500
DEFAULT_MAX_PDF_SIZE_MB = 50
DEFAULT_DPI = 300
DEFAULT_PNG_COMPRESSION = 6


class ConfigurationError(ValueError):
    """An environment variable holds a value the service cannot use."""


def _get_int(env: Mapping[str, str], name: str, default: int, minimum: Optional[int] = None) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{raw}'")
    if minimum is not None and value < minimum:
        raise ConfigurationError(f"{name} must be at least {minimum}, got {value}")
    return value


def _get_float(env: Mapping[str, str], name: str, default: float, minimum: float = 0.0) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got '{raw}'")
    if value < minimum:
        raise ConfigurationError(f"{name} must be at least {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class ServiceSettings:
    """Immutable runtime settings."""

    trust_mode: TrustMode = TrustMode.STRICT

    # Authentication
    jwt_secret_name: str = DEFAULT_SECRET_NAME
    aws_region: str = DEFAULT_AWS_REGION
    aws_endpoint_url: Optional[str] = None

    # Retry
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    webhook_failure_max_attempts: int = 1
    upload_concurrency: int = 5

    # Timeouts (seconds)
    fetch_timeout: float = 30.0
    upload_timeout: float = 60.0
    webhook_timeout: float = 10.0

    # Limits and rendering
    max_pages: int = DEFAULT_MAX_PAGES
    max_pdf_size_mb: int = DEFAULT_MAX_PDF_SIZE_MB
    dpi: int = DEFAULT_DPI
    png_compression: int = DEFAULT_PNG_COMPRESSION
    work_dir: str = DEFAULT_WORK_DIR

    @property
    def max_pdf_size_bytes(self) -> int:
        return self.max_pdf_size_mb * 1024 * 1024

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'ServiceSettings':
        """
        Build settings from environment variables.

        Raises:
            ConfigurationError: If a variable is present but invalid
        """
        env = os.environ if env is None else env

        try:
            trust_mode = TrustMode.parse(env.get("PDFCONVERT_TRUST_MODE"))
        except ValueError as e:
            raise ConfigurationError(str(e))

        compression = _get_int(env, "PNG_COMPRESSION", DEFAULT_PNG_COMPRESSION, minimum=0)
        if compression > 9:
            raise ConfigurationError(f"PNG_COMPRESSION must be between 0 and 9, got {compression}")

        return cls(
            trust_mode=trust_mode,
            jwt_secret_name=env.get("JWT_SECRET_NAME") or DEFAULT_SECRET_NAME,
            aws_region=env.get("AWS_REGION") or env.get("AWS_DEFAULT_REGION") or DEFAULT_AWS_REGION,
            aws_endpoint_url=env.get("AWS_ENDPOINT_URL") or None,
            retry_max_attempts=_get_int(env, "PDFCONVERT_RETRY_MAX_ATTEMPTS", 3, minimum=1),
            retry_base_delay=_get_float(env, "PDFCONVERT_RETRY_BASE_DELAY", 1.0),
            webhook_failure_max_attempts=_get_int(env, "PDFCONVERT_WEBHOOK_FAILURE_MAX_ATTEMPTS", 1, minimum=1),
            upload_concurrency=_get_int(env, "PDFCONVERT_UPLOAD_CONCURRENCY", 5, minimum=1),
            fetch_timeout=_get_float(env, "PDFCONVERT_FETCH_TIMEOUT", 30.0),
            upload_timeout=_get_float(env, "PDFCONVERT_UPLOAD_TIMEOUT", 60.0),
            webhook_timeout=_get_float(env, "PDFCONVERT_WEBHOOK_TIMEOUT", 10.0),
            max_pages=_get_int(env, "PDFCONVERT_MAX_PAGES", DEFAULT_MAX_PAGES, minimum=1),
            max_pdf_size_mb=_get_int(env, "PDFCONVERT_MAX_PDF_SIZE_MB", DEFAULT_MAX_PDF_SIZE_MB, minimum=1),
            dpi=_get_int(env, "CONVERSION_DPI", DEFAULT_DPI, minimum=1),
            png_compression=compression,
            work_dir=env.get("PDFCONVERT_WORK_DIR") or DEFAULT_WORK_DIR,
        )
