"""
Best-effort completion callbacks.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .http_client import Failure, Outcome, RetryExecutor, RetryPolicy, Success
from .logging_config import get_logger
from .url_helpers import sanitize_url

logger = get_logger()

STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class NotifyResult:
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    attempts: int = 0


def build_notification_payload(
    unique_id: str,
    status: str,
    images: Optional[List[str]] = None,
    page_count: int = 0,
    processing_time_ms: int = 0,
    error: Optional[str] = None
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "unique_id": unique_id,
        "status": status,
        "images": list(images or []),
        "page_count": page_count,
        "processing_time_ms": processing_time_ms,
    }
    if error is not None:
        payload["error"] = error
    return payload


class WebhookNotifier:
    """POSTs a JSON payload to a webhook through the retry executor. Never raises."""

    def __init__(self, client: httpx.AsyncClient, executor: RetryExecutor, policy: RetryPolicy):
        self.client = client
        self.executor = executor
        self.policy = policy

    async def notify(self, url: str, payload: Dict[str, Any], policy: Optional[RetryPolicy] = None) -> NotifyResult:
        """
        Send ``payload`` to ``url``.

        Args:
            url: Webhook URL, already validated
            payload: JSON body, see ``build_notification_payload``
            policy: Override of the notifier's retry policy, used for the
                reduced-retry failure notification

        Returns:
            NotifyResult; any 2xx response is a success
        """
        safe_url = sanitize_url(url)

        async def attempt_post(attempt: int) -> Outcome:
            response = await self.client.post(url, json=payload)
            if response.is_success:
                return Success(response.status_code)
            return Failure.from_response(response)

        outcome = await self.executor.execute(
            attempt_post, policy or self.policy, description=f"Webhook to {safe_url}"
        )
        if outcome.ok:
            logger.info(f"Webhook delivered to {safe_url} (HTTP {outcome.value})")
            return NotifyResult(success=True, status_code=outcome.value, attempts=outcome.attempts)

        logger.warning(f"Webhook delivery to {safe_url} failed: {outcome.message}")
        return NotifyResult(
            success=False,
            status_code=outcome.status_code,
            error=outcome.message,
            attempts=outcome.attempts,
        )
