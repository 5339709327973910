"""
Conversion router for the /convert endpoint.

The router only hands the raw request to a fresh ``ConversionOrchestrator``;
authentication, body decoding, validation and the pipeline itself live in
``pdfconvert.orchestrator``.
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from .orchestrator import ServiceContainer

router = APIRouter(tags=["conversions"])


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


@router.post("/convert")
async def convert_pdf(request: Request) -> JSONResponse:
    """
    Convert a PDF at a signed source URL to PNG pages uploaded under a signed destination.

    Body: ``{"source": ..., "destination": ..., "unique_id": ..., "webhook": optional}``
    Header: ``Authorization: Bearer <jwt>``
    """
    orchestrator = get_services(request).new_orchestrator()
    return await orchestrator.handle(request.headers, await request.body())
