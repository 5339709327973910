"""
Request orchestration for POST /convert.

A ``ConversionOrchestrator`` handles exactly one request and walks it through

    received -> authenticated -> validated -> fetched -> converted
             -> uploaded -> notified -> cleaned_up -> completed | failed

Authentication and request validation happen before any work directory is
created or any outbound call is made. Once the pipeline starts, every exit
path goes through the work directory's cleanup, which runs exactly once.

Long-lived collaborators (HTTP clients, the secret cache, the converter) live
in a ``ServiceContainer`` that is built once per process and shared.
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

import httpx
from fastapi.responses import JSONResponse

from ._local_ import DocumentConverter, PdfImageRenderer
from .config import ServiceSettings
from .utils.error_handling import (
    AuthenticationError,
    AuthServiceUnavailableError,
    ConversionServiceError,
    ErrorCode,
    PipelineStageError,
    RequestValidationError,
    create_error_response,
    error_response_from_exception,
)
from .utils.http_client import HTTPClientFactory, RetryExecutor, RetryPolicy, ServiceType
from .utils.image_uploader import ImageUploader
from .utils.logging_config import get_logger
from .utils.pdf_fetcher import PDFFetcher
from .utils.request_validator import ConversionRequest, is_valid_unique_id, parse_conversion_request
from .utils.temp_file_manager import WorkDirectory
from .utils.token_authenticator import (
    AuthFailure,
    SecretCache,
    SecretsManagerStore,
    SecretStore,
    TokenAuthenticator,
)
from .utils.url_validator import URLValidator
from .utils.webhook_notifier import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    WebhookNotifier,
    build_notification_payload,
)

logger = get_logger()

STAGE_DOWNLOAD = "PDF download"
STAGE_CONVERSION = "PDF conversion"
STAGE_UPLOAD = "Image upload"

SUCCESS_MESSAGE = "PDF conversion and upload completed"
INTERNAL_ERROR_MESSAGE = "Internal server error"


def decode_body(body: Any) -> Any:
    """Decode a raw JSON body; already decoded objects pass through."""
    if isinstance(body, (bytes, bytearray, str)):
        if not body.strip():
            raise RequestValidationError("Request body is empty", ErrorCode.INVALID_REQUEST)
        try:
            return json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise RequestValidationError("Invalid JSON in request body", ErrorCode.INVALID_JSON)
        except RecursionError:
            raise RequestValidationError("JSON body is nested too deeply", ErrorCode.INVALID_JSON)
    return body


class ConversionState(str, Enum):
    RECEIVED = "received"
    AUTHENTICATED = "authenticated"
    VALIDATED = "validated"
    FETCHED = "fetched"
    CONVERTED = "converted"
    UPLOADED = "uploaded"
    NOTIFIED = "notified"
    CLEANED_UP = "cleaned_up"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ServiceContainer:
    """Process-wide collaborators shared by every request."""

    settings: ServiceSettings
    validator: URLValidator
    authenticator: TokenAuthenticator
    secret_cache: SecretCache
    fetcher: PDFFetcher
    uploader: ImageUploader
    notifier: WebhookNotifier
    converter: DocumentConverter
    retry_policy: RetryPolicy
    http_factory: HTTPClientFactory
    clock: Callable[[], float] = field(default=time.monotonic)

    @classmethod
    def from_settings(
        cls,
        settings: ServiceSettings,
        secret_store: Optional[SecretStore] = None,
        converter: Optional[DocumentConverter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        clock: Callable[[], float] = time.monotonic
    ) -> 'ServiceContainer':
        """
        Wire up the pipeline from settings.

        Args:
            settings: Runtime configuration
            secret_store: Secret source; defaults to AWS Secrets Manager
            converter: Rendering engine; defaults to PdfImageRenderer
            transport: httpx transport for every outbound client (tests use MockTransport)
            sleep: Backoff sleep; defaults to asyncio.sleep
            clock: Monotonic clock used for processing time
        """
        http_factory = HTTPClientFactory(timeouts={
            ServiceType.SOURCE: settings.fetch_timeout,
            ServiceType.DESTINATION: settings.upload_timeout,
            ServiceType.WEBHOOK: settings.webhook_timeout,
        })
        overrides: Dict[str, Any] = {"transport": transport} if transport is not None else {}
        source_client = http_factory.create_client(ServiceType.SOURCE, **overrides)
        destination_client = http_factory.create_client(ServiceType.DESTINATION, **overrides)
        webhook_client = http_factory.create_client(ServiceType.WEBHOOK, **overrides)

        if secret_store is None:
            secret_store = SecretsManagerStore(region=settings.aws_region, endpoint_url=settings.aws_endpoint_url)
        secret_cache = SecretCache(secret_store, settings.jwt_secret_name)

        if converter is None:
            converter = PdfImageRenderer(
                dpi=settings.dpi,
                compression=settings.png_compression,
                max_pages=settings.max_pages,
            )

        executor = RetryExecutor(sleep=sleep) if sleep is not None else RetryExecutor()
        policy = RetryPolicy(max_attempts=settings.retry_max_attempts, base_delay=settings.retry_base_delay)

        return cls(
            settings=settings,
            validator=URLValidator(settings.trust_mode),
            authenticator=TokenAuthenticator(secret_cache),
            secret_cache=secret_cache,
            fetcher=PDFFetcher(
                source_client,
                executor,
                policy,
                trust_mode=settings.trust_mode,
                max_size_bytes=settings.max_pdf_size_bytes,
            ),
            uploader=ImageUploader(destination_client, executor, policy, concurrency=settings.upload_concurrency),
            notifier=WebhookNotifier(webhook_client, executor, policy),
            converter=converter,
            retry_policy=policy,
            http_factory=http_factory,
            clock=clock,
        )

    def new_orchestrator(self) -> 'ConversionOrchestrator':
        return ConversionOrchestrator(self)

    async def aclose(self) -> None:
        await self.http_factory.close_all_clients()


class ConversionOrchestrator:
    """Runs a single conversion request through the pipeline."""

    def __init__(self, services: ServiceContainer):
        self.services = services
        self.settings = services.settings
        self.state = ConversionState.RECEIVED
        self.history: List[ConversionState] = [ConversionState.RECEIVED]
        self.request: Optional[ConversionRequest] = None
        self.work_dir: Optional[WorkDirectory] = None
        self._started = services.clock()
        self._page_count = 0
        self._payload: Any = None

    def _transition(self, state: ConversionState) -> None:
        logger.debug(f"Request state {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def _elapsed_ms(self) -> int:
        return int((self.services.clock() - self._started) * 1000)

    async def handle(self, headers: Mapping[str, str], body: Union[bytes, str, Dict[str, Any], None]) -> JSONResponse:
        """
        Authenticate, validate and run one conversion request.

        Args:
            headers: Request headers, matched case-insensitively
            body: Raw JSON body, or an already decoded object

        Returns:
            JSONResponse: 200 on completion, 400/401 for rejected requests,
            422 when a pipeline stage failed, 500 otherwise.
        """
        try:
            await self._admit(headers, body)
        except ConversionServiceError as e:
            self._transition(ConversionState.FAILED)
            payload = self._payload
            unique_id = payload.get("unique_id") if isinstance(payload, dict) else None
            if isinstance(e, AuthenticationError) or not is_valid_unique_id(unique_id):
                unique_id = None
            return error_response_from_exception(e, unique_id=unique_id)
        except Exception:
            self._transition(ConversionState.FAILED)
            logger.exception("Unexpected error while admitting request")
            return create_error_response(ErrorCode.INTERNAL_ERROR, INTERNAL_ERROR_MESSAGE)

        request = self.request
        self.work_dir = WorkDirectory(self.settings.work_dir, prefix=request.unique_id)
        try:
            async with self.work_dir:
                body = await self._run_pipeline(request)
        except PipelineStageError as e:
            self._transition(ConversionState.CLEANED_UP)
            logger.warning(f"Conversion {request.unique_id} failed: {e.message}")
            await self._notify_failure(request, e.message)
            self._transition(ConversionState.FAILED)
            return error_response_from_exception(e, unique_id=request.unique_id)
        except Exception:
            self._transition(ConversionState.CLEANED_UP)
            logger.exception(f"Unexpected error while converting {request.unique_id}")
            self._transition(ConversionState.FAILED)
            return create_error_response(
                ErrorCode.INTERNAL_ERROR,
                INTERNAL_ERROR_MESSAGE,
                unique_id=request.unique_id,
            )

        self._transition(ConversionState.CLEANED_UP)
        self._transition(ConversionState.COMPLETED)
        logger.info(
            f"Conversion {request.unique_id} completed: {body['images_count']} images "
            f"in {self._elapsed_ms()} ms"
        )
        return JSONResponse(status_code=200, content=body)

    async def _admit(self, headers: Mapping[str, str], body: Any) -> None:
        auth = await asyncio.to_thread(self.services.authenticator.authenticate, headers)
        if not auth.authenticated:
            if auth.failure is AuthFailure.SERVICE_UNAVAILABLE:
                raise AuthServiceUnavailableError(auth.reason)
            raise AuthenticationError(auth.reason)
        self._transition(ConversionState.AUTHENTICATED)

        self._payload = decode_body(body)
        self.request = parse_conversion_request(self._payload, self.services.validator)
        self._transition(ConversionState.VALIDATED)

    async def _run_pipeline(self, request: ConversionRequest) -> Dict[str, Any]:
        fetched = await self.services.fetcher.fetch(request.source)
        if not fetched.success:
            raise PipelineStageError(STAGE_DOWNLOAD, fetched.error or "Unknown error")
        self._transition(ConversionState.FETCHED)

        conversion = await asyncio.to_thread(
            self.services.converter.convert,
            fetched.content,
            self.work_dir.path,
            request.unique_id,
            self.settings.dpi,
        )
        if not conversion.success:
            raise PipelineStageError(STAGE_CONVERSION, conversion.error or "Unknown error")
        self._page_count = conversion.page_count
        self._transition(ConversionState.CONVERTED)

        uploaded = await self.services.uploader.upload_all(request.destination, conversion.images)
        if not uploaded.success:
            raise PipelineStageError(STAGE_UPLOAD, uploaded.error or "Unknown error")
        self._transition(ConversionState.UPLOADED)

        if request.webhook:
            payload = build_notification_payload(
                request.unique_id,
                STATUS_COMPLETED,
                images=uploaded.uploaded_urls,
                page_count=conversion.page_count,
                processing_time_ms=self._elapsed_ms(),
            )
            await self.services.notifier.notify(request.webhook, payload)
            self._transition(ConversionState.NOTIFIED)

        return {
            "status": "completed",
            "message": SUCCESS_MESSAGE,
            "unique_id": request.unique_id,
            "images": uploaded.uploaded_urls,
            "images_count": len(uploaded.uploaded_urls),
            "pages_converted": conversion.page_count,
            "metadata": conversion.metadata,
        }

    async def _notify_failure(self, request: ConversionRequest, error: str) -> None:
        if not request.webhook:
            return
        payload = build_notification_payload(
            request.unique_id,
            STATUS_FAILED,
            page_count=self._page_count,
            processing_time_ms=self._elapsed_ms(),
            error=error,
        )
        policy = self.services.retry_policy.with_max_attempts(self.settings.webhook_failure_max_attempts)
        await self.services.notifier.notify(request.webhook, payload, policy=policy)
