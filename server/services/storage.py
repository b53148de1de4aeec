import asyncio
import logging
import os
import time
import uuid

from config.config import MAX_SCREENSHOT_BYTES, UPLOAD_DIR
from .errors import DependencyFailure, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_TYPES = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}


def check_screenshot(content: bytes, content_type: str, max_bytes: int = MAX_SCREENSHOT_BYTES) -> str:
    """Return the file extension for an acceptable screenshot, else raise ValidationError."""
    extension = ALLOWED_TYPES.get((content_type or "").lower())
    if extension is None:
        raise ValidationError("Only image files are allowed (JPEG, PNG, WebP)")
    if not content:
        raise ValidationError("Please upload payment screenshot")
    if len(content) > max_bytes:
        raise ValidationError(f"Screenshot exceeds the {max_bytes // (1024 * 1024)}MB limit")
    return extension


class LocalFileStore:
    """Stores payment screenshots in a local directory and returns a URL-style reference."""

    def __init__(self, directory: str = UPLOAD_DIR, url_prefix: str = "/uploads/payments"):
        self.directory = directory
        self.url_prefix = url_prefix

    def _write(self, path: str, content: bytes):
        os.makedirs(self.directory, exist_ok=True)
        with open(path, "wb") as handle:
            handle.write(content)

    async def store(self, content: bytes, content_type: str) -> str:
        extension = check_screenshot(content, content_type)
        filename = f"payment-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{extension}"
        try:
            await asyncio.to_thread(self._write, os.path.join(self.directory, filename), content)
        except OSError as error:
            logger.error("Could not store screenshot %s: %s", filename, error)
            raise DependencyFailure("Could not store the payment screenshot, please try again") from error
        return f"{self.url_prefix}/{filename}"

    async def remove(self, url: str):
        """Delete a stored screenshot by the reference ``store`` returned. Missing files are ignored."""
        path = os.path.join(self.directory, os.path.basename(url))
        try:
            await asyncio.to_thread(os.remove, path)
        except FileNotFoundError:
            logger.warning("Screenshot %s already removed", url)
