"""
Concurrent upload of rendered page images to a signed destination prefix.

Each page is PUT to ``<destination path>/page-<n>.png`` with the destination's
signing query string kept. A fixed number of workers drain a shared queue and
write their outcome into the slot of the page they uploaded, so the returned
order always matches the input order.
"""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Union

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
from .pdf_fetcher import REDIRECT_STATUS_CODES
from .url_helpers import append_to_path, sanitize_url, strip_query_params

logger = get_logger()

DEFAULT_CONCURRENCY = 5
IMAGE_CONTENT_TYPE = "image/png"
NO_ETAG = "no-etag"
ACCESS_DENIED_MESSAGE = "Access denied - URL may be expired or invalid"


@dataclass(frozen=True)
class UploadOutcome:
    """Result of uploading one page, tagged with its 0-based input index."""
    index: int
    success: bool
    url: str
    etag: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class UploadBatchResult:
    success: bool
    uploaded_urls: List[str] = field(default_factory=list)
    etags: List[str] = field(default_factory=list)
    error: Optional[str] = None
    outcomes: List[UploadOutcome] = field(default_factory=list)


def page_filename(page_number: int) -> str:
    """1-indexed page object name."""
    return f"page-{page_number}.png"


def build_page_urls(destination: str, count: int) -> List[str]:
    return [append_to_path(destination, page_filename(i + 1)) for i in range(count)]


def summarize_failures(outcomes: Sequence[UploadOutcome]) -> str:
    """Summary line for a partially failed batch, repeated errors listed once."""
    failed = [o for o in outcomes if not o.success]
    unique_errors = list(dict.fromkeys(o.error or "Unknown error" for o in failed))
    return f"Failed to upload {len(failed)} of {len(outcomes)} images: {'; '.join(unique_errors)}"


class ImageUploader:
    """
    Uploads page images with bounded parallelism.

    Args:
        client: Pooled AsyncClient used for the PUT requests
        executor: Shared RetryExecutor; every page is retried independently
        policy: Retry policy for uploads
        concurrency: Number of upload workers
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        executor: RetryExecutor,
        policy: RetryPolicy,
        concurrency: int = DEFAULT_CONCURRENCY
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.client = client
        self.executor = executor
        self.policy = policy
        self.concurrency = concurrency

    async def upload_all(self, destination: str, artifacts: Sequence[Union[str, Path]]) -> UploadBatchResult:
        """
        Upload ``artifacts`` in order as page-1.png, page-2.png, ...

        Returns:
            UploadBatchResult with query-stripped URLs and ETags in input
            order, or the aggregated error when any page failed.
        """
        targets = build_page_urls(destination, len(artifacts))
        results: List[Optional[UploadOutcome]] = [None] * len(artifacts)

        queue: asyncio.Queue = asyncio.Queue()
        for index, (artifact, target) in enumerate(zip(artifacts, targets)):
            queue.put_nowait((index, Path(artifact), target))

        async def worker() -> None:
            while True:
                try:
                    index, artifact, target = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                results[index] = await self._upload_one(index, artifact, target)

        worker_count = min(self.concurrency, len(artifacts))
        logger.info(
            f"Uploading {len(artifacts)} images to {sanitize_url(destination)} "
            f"with {worker_count} workers"
        )
        await asyncio.gather(*(worker() for _ in range(worker_count)))

        outcomes: List[UploadOutcome] = [outcome for outcome in results if outcome is not None]
        if any(not outcome.success for outcome in outcomes):
            error = summarize_failures(outcomes)
            logger.error(error)
            return UploadBatchResult(success=False, error=error, outcomes=outcomes)

        logger.info(f"Uploaded {len(outcomes)} images")
        return UploadBatchResult(
            success=True,
            uploaded_urls=[strip_query_params(outcome.url) for outcome in outcomes],
            etags=[outcome.etag or NO_ETAG for outcome in outcomes],
            outcomes=outcomes,
        )

    async def _upload_one(self, index: int, artifact: Path, target: str) -> UploadOutcome:
        try:
            data = await asyncio.to_thread(artifact.read_bytes)
        except OSError as e:
            logger.error(f"Could not read {artifact.name}: {e}")
            return UploadOutcome(index, False, target, error=f"Upload error: {e}")

        safe_target = sanitize_url(target)

        async def attempt_put(attempt: int) -> Outcome:
            response = await self.client.put(
                target,
                content=data,
                headers={"Content-Type": IMAGE_CONTENT_TYPE},
            )
            if response.is_success:
                return Success(response.headers.get("ETag", NO_ETAG))
            if response.status_code in REDIRECT_STATUS_CODES:
                return Failure(
                    FailureCategory.APPLICATION,
                    f"Unexpected redirect (HTTP {response.status_code}) on upload",
                    status_code=response.status_code,
                )
            if response.status_code == 403:
                return Failure(FailureCategory.HTTP_STATUS, ACCESS_DENIED_MESSAGE, status_code=403)
            return Failure.from_response(response)

        outcome = await self.executor.execute(attempt_put, self.policy, description=f"Upload of {safe_target}")
        if outcome.ok:
            return UploadOutcome(index, True, target, etag=outcome.value)
        return UploadOutcome(index, False, target, error=outcome.message)
