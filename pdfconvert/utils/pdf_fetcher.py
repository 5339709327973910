"""
PDF fetching for the conversion pipeline.

The source document is downloaded from a signed URL with a pooled httpx
client. Redirects are followed by hand so the hop limit and the https
downgrade rule are enforced here rather than inside the client, the body is
streamed against a size limit, and the bytes are checked for a PDF header
before they are handed to the converter.
"""

from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urljoin, urlsplit

import httpx

from .http_client import (
    Failure,
    FailureCategory,
    Outcome,
    RetryExecutor,
    RetryPolicy,
    Success,
)
from .logging_config import get_logger
from .url_helpers import sanitize_url
from .url_validator import TrustMode

logger = get_logger()

# Configuration
MAX_REDIRECTS = 5
DEFAULT_MAX_SIZE = 50 * 1024 * 1024  # 50MB
PDF_SIGNATURES = (b"%PDF-1.", b"%PDF-2.")
REDIRECT_STATUS_CODES = frozenset({301, 302, 303, 307, 308})
ALLOWED_SCHEMES = ("http", "https")


@dataclass(frozen=True)
class FetchResult:
    """Outcome of a document download."""
    success: bool
    content: Optional[bytes] = None
    content_type: Optional[str] = None
    final_url: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0


def has_pdf_signature(content: bytes) -> bool:
    """Check the leading bytes for a PDF 1.x or 2.x header."""
    return content.startswith(PDF_SIGNATURES)


class PDFFetcher:
    """
    Downloads source PDFs through the retry executor.

    Args:
        client: Pooled AsyncClient with redirects disabled
        executor: Shared RetryExecutor
        policy: Retry policy for downloads
        trust_mode: Strict mode refuses https -> http redirects
        max_size_bytes: Largest body accepted before the download is abandoned
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        executor: RetryExecutor,
        policy: RetryPolicy,
        trust_mode: TrustMode = TrustMode.STRICT,
        max_size_bytes: int = DEFAULT_MAX_SIZE
    ):
        self.client = client
        self.executor = executor
        self.policy = policy
        self.trust_mode = trust_mode
        self.max_size_bytes = max_size_bytes

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch the document at ``url``.

        Returns:
            FetchResult with the body on success, or the error message of the
            terminal failure. Never raises for network or content problems.
        """
        scheme = urlsplit(url).scheme.lower() if isinstance(url, str) else ""
        if scheme not in ALLOWED_SCHEMES:
            return FetchResult(success=False, error=f"Unsupported URL scheme: '{scheme}'")

        safe_url = sanitize_url(url)
        logger.info(f"Downloading PDF from {safe_url}")

        async def attempt_download(attempt: int) -> Outcome:
            logger.debug(f"PDF download attempt {attempt} for {safe_url}")
            return await self._download(url)

        outcome = await self.executor.execute(attempt_download, self.policy, description="PDF download")

        if not outcome.ok:
            logger.error(f"PDF download failed for {safe_url}: {outcome.message}")
            return FetchResult(success=False, error=outcome.message, attempts=outcome.attempts)

        content, content_type, final_url = outcome.value
        logger.info(f"Downloaded {len(content)} bytes from {safe_url} in {outcome.attempts} attempt(s)")
        return FetchResult(
            success=True,
            content=content,
            content_type=content_type,
            final_url=final_url,
            attempts=outcome.attempts,
        )

    async def _download(self, url: str) -> Outcome:
        """One attempt: follow redirects, read the body, verify the header."""
        current_url = url
        for _ in range(MAX_REDIRECTS + 1):
            async with self.client.stream("GET", current_url) as response:
                if response.status_code in REDIRECT_STATUS_CODES:
                    next_url, failure = self._resolve_redirect(current_url, response)
                    if failure:
                        return failure
                    logger.info(f"Following redirect {response.status_code} to {sanitize_url(next_url)}")
                    current_url = next_url
                    continue

                if not response.is_success:
                    return Failure.from_response(response)

                body = await self._read_body(response)
                if isinstance(body, Failure):
                    return body

                if not has_pdf_signature(body):
                    return Failure(FailureCategory.CONTENT, "Downloaded content is not a valid PDF file")

                content_type = response.headers.get("Content-Type", "application/pdf")
                return Success((body, content_type, current_url))

        return Failure(FailureCategory.APPLICATION, f"Too many redirects (max {MAX_REDIRECTS})")

    def _resolve_redirect(self, current_url: str, response: httpx.Response) -> Tuple[Optional[str], Optional[Failure]]:
        location = response.headers.get("Location")
        if not location:
            return None, Failure(
                FailureCategory.APPLICATION,
                f"Redirect (HTTP {response.status_code}) without Location header",
            )

        next_url = urljoin(current_url, location)
        next_scheme = urlsplit(next_url).scheme.lower()
        if next_scheme not in ALLOWED_SCHEMES:
            return None, Failure(FailureCategory.APPLICATION, f"Redirect to unsupported scheme: '{next_scheme}'")

        if (self.trust_mode is TrustMode.STRICT
                and urlsplit(current_url).scheme.lower() == "https"
                and next_scheme == "http"):
            return None, Failure(FailureCategory.APPLICATION, "Refusing redirect from HTTPS to HTTP")

        return next_url, None

    async def _read_body(self, response: httpx.Response):
        declared = response.headers.get("Content-Length")
        if declared and declared.isdigit() and int(declared) > self.max_size_bytes:
            return self._oversize_failure()

        chunks = []
        received = 0
        async for chunk in response.aiter_bytes():
            received += len(chunk)
            if received > self.max_size_bytes:
                return self._oversize_failure()
            chunks.append(chunk)
        return b"".join(chunks)

    def _oversize_failure(self) -> Failure:
        return Failure(
            FailureCategory.CONTENT,
            f"PDF exceeds maximum size of {self.max_size_bytes} bytes",
        )
