"""
Shared test configuration and fixtures for the PDF converter tests.

Outbound HTTP never leaves the process: every client is built on an
``httpx.MockTransport`` routed to ``FakeCloud``, which plays the source
bucket, the destination bucket and the webhook receiver. Backoff sleeps are
recorded instead of awaited.
"""

import json
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt

from app import create_app
from pdfconvert._local_ import ConversionResult
from pdfconvert.config import ServiceSettings
from pdfconvert.orchestrator import ServiceContainer
from pdfconvert.utils.http_client import RetryExecutor, RetryPolicy
from pdfconvert.utils.token_authenticator import SecretNotFoundError


# ===== CONSTANTS =====

TEST_SECRET = "test-jwt-secret-key"
SECRET_NAME = "pdf-converter/jwt-secret"

SIGNED_QUERY = (
    "X-Amz-Algorithm=AWS4-HMAC-SHA256"
    "&X-Amz-Credential=AKIATEST%2F20240101%2Fus-east-1%2Fs3%2Faws4_request"
    "&X-Amz-Signature=deadbeef"
)
SOURCE_URL = f"https://source-bucket.s3.us-east-1.amazonaws.com/incoming/report.pdf?{SIGNED_QUERY}"
DESTINATION_URL = f"https://output-bucket.s3.amazonaws.com/converted/job-1?{SIGNED_QUERY}"
UNSIGNED_DESTINATION_URL = "https://output-bucket.s3.amazonaws.com/converted/job-1"
WEBHOOK_URL = "https://hooks.example.com/pdf-complete"

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n<< /Root 1 0 R >>\n%%EOF\n"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


# ===== TOKENS =====

def make_token(secret: str = TEST_SECRET, expires_in: int = 3600, **claims: Any) -> str:
    """Sign an HS256 token; a negative ``expires_in`` gives an expired token."""
    payload = {"sub": "test-user", "exp": int(time.time()) + expires_in}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def conversion_payload(**overrides: Any) -> Dict[str, Any]:
    payload = {
        "source": SOURCE_URL,
        "destination": DESTINATION_URL,
        "unique_id": "job-1",
    }
    payload.update(overrides)
    return {k: v for k, v in payload.items() if v is not None}


# ===== FAKES =====

class FakeSecretStore:
    """In-memory secret store that counts lookups and can be made to fail."""

    def __init__(self, secrets: Optional[Dict[str, str]] = None):
        self.secrets = dict(secrets or {SECRET_NAME: TEST_SECRET})
        self.calls = 0
        self.error: Optional[Exception] = None

    def get_secret(self, name: str) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        if name not in self.secrets:
            raise SecretNotFoundError(f"Secret '{name}' not found")
        return self.secrets[name]


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeCloud:
    """
    MockTransport handler standing in for S3 and the webhook receiver.

    GET serves queued source responses (the last one repeats), PUT stores
    uploaded objects unless a per-file status is configured, POST records
    webhook payloads.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.source_responses: List[Union[httpx.Response, Exception]] = []
        self.upload_status: Dict[str, int] = {}
        self.uploads: Dict[str, bytes] = {}
        self.webhook_status = 200
        self.webhook_error: Optional[Exception] = None
        self.webhook_payloads: List[Dict[str, Any]] = []

    def queue_source(self, *responses: Union[httpx.Response, Exception]) -> None:
        self.source_responses.extend(responses)

    def requests_by_method(self, method: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method]

    @property
    def gets(self) -> List[httpx.Request]:
        return self.requests_by_method("GET")

    @property
    def puts(self) -> List[httpx.Request]:
        return self.requests_by_method("PUT")

    @property
    def posts(self) -> List[httpx.Request]:
        return self.requests_by_method("POST")

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "GET":
            return self._serve_source(request)
        if request.method == "PUT":
            return self._store_upload(request)
        if request.method == "POST":
            return self._receive_webhook(request)
        return httpx.Response(405)

    def _serve_source(self, request: httpx.Request) -> httpx.Response:
        if not self.source_responses:
            return httpx.Response(200, content=PDF_BYTES, headers={"Content-Type": "application/pdf"})
        response = self.source_responses.pop(0) if len(self.source_responses) > 1 else self.source_responses[0]
        if isinstance(response, Exception):
            raise response
        # Fresh copy, a repeated response must not share a consumed stream
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

    def _store_upload(self, request: httpx.Request) -> httpx.Response:
        filename = request.url.path.rsplit("/", 1)[-1]
        status = self.upload_status.get(filename, 200)
        if 200 <= status < 300:
            self.uploads[request.url.path] = request.content
            return httpx.Response(status, headers={"ETag": f'"etag-{filename}"'})
        return httpx.Response(status)

    def _receive_webhook(self, request: httpx.Request) -> httpx.Response:
        self.webhook_payloads.append(json.loads(request.content))
        if self.webhook_error is not None:
            raise self.webhook_error
        return httpx.Response(self.webhook_status)


class FakeConverter:
    """Converter that writes placeholder PNGs instead of rendering."""

    def __init__(self, pages: int = 2):
        self.pages = pages
        self.error: Optional[str] = None
        self.raises: Optional[Exception] = None
        self.calls: List[Dict[str, Any]] = []

    @property
    def last_work_dir(self) -> Optional[Path]:
        return Path(self.calls[-1]["work_dir"]) if self.calls else None

    def convert(self, content: bytes, work_dir, unique_id: str, dpi: Optional[int] = None) -> ConversionResult:
        self.calls.append({"content": content, "work_dir": work_dir, "unique_id": unique_id, "dpi": dpi})
        if self.raises is not None:
            raise self.raises
        if self.error is not None:
            return ConversionResult.failed(self.error)

        images = []
        for page_number in range(1, self.pages + 1):
            path = Path(work_dir) / f"{unique_id}_page_{page_number}.png"
            path.write_bytes(PNG_BYTES)
            images.append(path)
        return ConversionResult(
            success=True,
            images=images,
            page_count=self.pages,
            metadata={"page_count": self.pages, "dpi": dpi, "compression": 6},
        )


# ===== FIXTURES =====

@pytest.fixture
def secret_store() -> FakeSecretStore:
    return FakeSecretStore()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fake_cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture
def fake_converter() -> FakeConverter:
    return FakeConverter()


@pytest.fixture
def executor(recording_sleep) -> RetryExecutor:
    return RetryExecutor(sleep=recording_sleep)


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=1.0)


@pytest.fixture
def mock_client(fake_cloud):
    """AsyncClient routed to FakeCloud, configured like the production clients."""
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_cloud.handle), follow_redirects=False)


@pytest.fixture
def work_root(tmp_path) -> Path:
    return tmp_path / "work"


@pytest.fixture
def settings(work_root) -> ServiceSettings:
    return ServiceSettings(work_dir=str(work_root))


@pytest.fixture
def services(settings, secret_store, fake_cloud, fake_converter, recording_sleep) -> ServiceContainer:
    return ServiceContainer.from_settings(
        settings,
        secret_store=secret_store,
        converter=fake_converter,
        transport=httpx.MockTransport(fake_cloud.handle),
        sleep=recording_sleep,
    )


@pytest.fixture
def client(services):
    """FastAPI test client wired to the fake collaborators."""
    with TestClient(create_app(services)) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return bearer(make_token())
