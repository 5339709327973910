"""
Per-request working directories.

Every conversion request gets its own directory under the service work root.
The converter writes page images into it and the uploader reads them back;
the directory and everything inside it are removed exactly once when the
request finishes, on success and failure alike.
"""

import asyncio
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Union

from .logging_config import get_logger

logger = get_logger()

# Default root for per-request directories
DEFAULT_WORK_ROOT = "/tmp/pdf-converter"


class TempFileError(Exception):
    """Custom exception for working directory operations."""
    pass


class WorkDirectory:
    """
    A per-request temporary directory with idempotent cleanup.

    Used as an async context manager; cleanup runs on exit whether the body
    raised or not, and a second ``cleanup()`` call is a no-op.
    """

    def __init__(self, root: Union[str, Path] = DEFAULT_WORK_ROOT, prefix: str = "request"):
        self.root = Path(root)
        self.prefix = prefix
        self.path: Optional[Path] = None
        self.cleanup_count = 0

    @property
    def cleaned_up(self) -> bool:
        return self.cleanup_count > 0

    def create(self) -> Path:
        """Create the directory under the work root."""
        if self.path is not None:
            return self.path
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            self.path = Path(tempfile.mkdtemp(prefix=f"{self.prefix}_", dir=self.root))
        except OSError as e:
            raise TempFileError(f"Failed to create work directory under {self.root}: {e}") from e
        logger.debug(f"Created work directory: {self.path}")
        return self.path

    def cleanup(self) -> None:
        """Remove the directory tree. Only the first call does any work."""
        if self.cleaned_up:
            return
        self.cleanup_count += 1
        if self.path is None:
            return
        try:
            shutil.rmtree(self.path)
            logger.debug(f"Cleaned up work directory: {self.path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to clean up work directory {self.path}: {e}")

    async def cleanup_async(self) -> None:
        await asyncio.to_thread(self.cleanup)

    async def __aenter__(self):
        await asyncio.to_thread(self.create)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.cleanup_async()

