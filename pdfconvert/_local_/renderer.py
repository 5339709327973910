"""
Local PDF to PNG rendering.

``PdfImageRenderer`` is the converter used by the service: pypdf counts the
pages and pdf2image (poppler) rasterizes them one at a time into the request's
work directory. Any object with the same ``convert`` signature can replace it.
"""

import logging
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

from pdf2image import convert_from_bytes
from pdf2image.exceptions import PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

logger = logging.getLogger(__name__)

DEFAULT_DPI = 300
DEFAULT_COMPRESSION = 6
DEFAULT_MAX_PAGES = 500


@dataclass(frozen=True)
class ConversionResult:
    """Converter output: ordered page images plus page metadata, or an error."""
    success: bool
    images: List[Path] = field(default_factory=list)
    page_count: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str) -> 'ConversionResult':
        return cls(success=False, error=error)


class DocumentConverter(Protocol):
    def convert(
        self,
        content: bytes,
        work_dir: Union[str, Path],
        unique_id: str,
        dpi: Optional[int] = None
    ) -> ConversionResult:
        ...


def page_image_name(unique_id: str, page_number: int) -> str:
    return f"{unique_id}_page_{page_number}.png"


class PdfImageRenderer:
    """
    Renders every page of a PDF to a PNG file.

    Args:
        dpi: Default render resolution
        compression: PNG compress level, 0 (none) to 9 (max)
        max_pages: Documents with more pages are rejected before rendering
    """

    def __init__(self, dpi: int = DEFAULT_DPI, compression: int = DEFAULT_COMPRESSION,
                 max_pages: int = DEFAULT_MAX_PAGES):
        if not 0 <= compression <= 9:
            raise ValueError(f"PNG compression must be between 0 and 9, got {compression}")
        self.dpi = dpi
        self.compression = compression
        self.max_pages = max_pages

    def count_pages(self, content: bytes) -> int:
        reader = PdfReader(BytesIO(content))
        return len(reader.pages)

    def convert(
        self,
        content: bytes,
        work_dir: Union[str, Path],
        unique_id: str,
        dpi: Optional[int] = None
    ) -> ConversionResult:
        """
        Render ``content`` into ``work_dir`` as ``<unique_id>_page_<n>.png``.

        Returns:
            ConversionResult with image paths in page order. Empty documents,
            documents over ``max_pages`` and render errors give a failed result.
        """
        dpi = dpi or self.dpi
        work_dir = Path(work_dir)

        try:
            page_count = self.count_pages(content)
        except (PdfReadError, ValueError) as e:
            logger.error(f"Could not read PDF for {unique_id}: {e}")
            return ConversionResult.failed(f"Unable to read PDF: {e}")

        if page_count == 0:
            return ConversionResult.failed("PDF has no pages")
        if page_count > self.max_pages:
            return ConversionResult.failed(
                f"PDF has {page_count} pages, exceeding the maximum of {self.max_pages}"
            )

        logger.info(f"Rendering {page_count} pages for {unique_id} at {dpi} DPI")
        images: List[Path] = []
        try:
            # One page at a time keeps a single bitmap in memory
            for page_number in range(1, page_count + 1):
                rendered = convert_from_bytes(
                    content, dpi=dpi, fmt="png", first_page=page_number, last_page=page_number
                )
                if not rendered:
                    return ConversionResult.failed(f"Page {page_number} produced no image")
                target = work_dir / page_image_name(unique_id, page_number)
                rendered[0].save(target, "PNG", compress_level=self.compression)
                images.append(target)
        except (PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError, OSError) as e:
            logger.error(f"Rendering failed for {unique_id}: {e}")
            return ConversionResult.failed(f"Rendering failed: {e}")

        return ConversionResult(
            success=True,
            images=images,
            page_count=page_count,
            metadata={"page_count": page_count, "dpi": dpi, "compression": self.compression},
        )
