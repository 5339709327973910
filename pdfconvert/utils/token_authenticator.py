"""
Bearer token authentication.

Tokens are HS256 JWTs signed with a shared secret held in AWS Secrets
Manager. The secret is loaded lazily by ``SecretCache`` on the first
authentication and reused by every later request; a failed load is not
cached, so the next request tries again. ``SecretCache.invalidate()`` is the
hook for secret rotation.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from .logging_config import get_logger

logger = get_logger()

JWT_ALGORITHM = "HS256"
DEFAULT_SECRET_NAME = "pdf-converter/jwt-secret"


# ===== SECRET STORE =====

class SecretStoreError(Exception):
    """Base class for secret store failures."""


class SecretNotFoundError(SecretStoreError):
    """The named secret does not exist."""


class SecretServiceError(SecretStoreError):
    """The secret store could not be reached or refused the request."""


class SecretStore(Protocol):
    def get_secret(self, name: str) -> str:
        ...


class SecretsManagerStore:
    """
    AWS Secrets Manager adapter.

    Args:
        region: AWS region of the secret
        endpoint_url: Alternative endpoint, e.g. a LocalStack container
        client: Preconfigured boto3 client, mainly for tests
    """

    def __init__(self, region: str = "us-east-1", endpoint_url: Optional[str] = None, client: Any = None):
        if client is None:
            kwargs: Dict[str, Any] = {"region_name": region}
            if endpoint_url:
                kwargs["endpoint_url"] = endpoint_url
            client = boto3.client("secretsmanager", **kwargs)
        self._client = client

    def get_secret(self, name: str) -> str:
        try:
            response = self._client.get_secret_value(SecretId=name)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code == "ResourceNotFoundException":
                raise SecretNotFoundError(f"Secret '{name}' not found") from e
            raise SecretServiceError(f"AWS service error - {code or e}") from e
        except BotoCoreError as e:
            raise SecretServiceError(f"AWS service error - {e}") from e

        secret = response.get("SecretString")
        if secret is None and response.get("SecretBinary") is not None:
            secret = response["SecretBinary"].decode("utf-8")
        if not secret:
            raise SecretServiceError(f"Secret '{name}' has no value")
        return secret


class SecretCache:
    """Lazily loaded, process-wide copy of one secret."""

    def __init__(self, store: SecretStore, secret_name: str = DEFAULT_SECRET_NAME):
        self._store = store
        self._secret_name = secret_name
        self._secret: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._secret is not None

    def get(self) -> str:
        """Return the secret, fetching it on first use. Raises SecretStoreError."""
        with self._lock:
            if self._secret is None:
                self._secret = self._store.get_secret(self._secret_name)
                logger.info(f"Loaded signing secret '{self._secret_name}'")
            return self._secret

    def invalidate(self) -> None:
        """Drop the cached value; the next ``get()`` refetches it."""
        with self._lock:
            self._secret = None
        logger.info(f"Invalidated cached secret '{self._secret_name}'")


# ===== AUTHENTICATOR =====

class AuthFailure(str, Enum):
    MISSING_HEADER = "Missing Authorization header"
    INVALID_FORMAT = "Invalid Bearer token format"
    EXPIRED = "Token has expired"
    INVALID_SIGNATURE = "Invalid signature"
    MALFORMED = "Malformed token"
    INVALID_CLAIMS = "Invalid token claims"
    SERVICE_UNAVAILABLE = "Authentication service unavailable"


@dataclass(frozen=True)
class AuthResult:
    authenticated: bool
    claims: Dict[str, Any] = field(default_factory=dict)
    failure: Optional[AuthFailure] = None

    @property
    def reason(self) -> Optional[str]:
        return self.failure.value if self.failure else None

    @classmethod
    def denied(cls, failure: AuthFailure) -> 'AuthResult':
        return cls(authenticated=False, failure=failure)


def extract_bearer_token(headers: Mapping[str, str]):
    """Return ``(token, failure)`` from request headers, matching the header name case-insensitively."""
    value = None
    for name, header_value in headers.items():
        if name.lower() == "authorization":
            value = header_value
            break

    if value is None or not value.strip():
        return None, AuthFailure.MISSING_HEADER

    parts = value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None, AuthFailure.INVALID_FORMAT
    return parts[1], None


class TokenAuthenticator:
    """Verifies ``Authorization: Bearer <jwt>`` headers against the cached secret."""

    def __init__(self, secret_cache: SecretCache, algorithm: str = JWT_ALGORITHM):
        self.secret_cache = secret_cache
        self.algorithm = algorithm

    def authenticate(self, headers: Mapping[str, str]) -> AuthResult:
        token, failure = extract_bearer_token(headers)
        if failure:
            logger.info(f"Authentication rejected: {failure.value}")
            return AuthResult.denied(failure)

        try:
            secret = self.secret_cache.get()
        except SecretStoreError as e:
            logger.error(f"Failed to retrieve JWT secret: {e}")
            return AuthResult.denied(AuthFailure.SERVICE_UNAVAILABLE)

        try:
            claims = jwt.decode(
                token,
                secret,
                algorithms=[self.algorithm],
                options={"verify_aud": False},
            )
        except ExpiredSignatureError:
            failure = AuthFailure.EXPIRED
        except JWTClaimsError:
            failure = AuthFailure.INVALID_CLAIMS
        except JWTError as e:
            if "Signature verification failed" in str(e):
                failure = AuthFailure.INVALID_SIGNATURE
            else:
                failure = AuthFailure.MALFORMED
        else:
            logger.debug(f"Authenticated subject {claims.get('sub', '<none>')}")
            return AuthResult(authenticated=True, claims=claims)

        logger.info(f"Authentication rejected: {failure.value}")
        return AuthResult.denied(failure)
