import asyncio
import logging
import re
import time
import random
from pathlib import Path
from src.livechat.models.chat import Attachment

logger = logging.getLogger(__name__)


class AttachmentStorage:
    """Writes uploaded chat files to disk and hands back their public url."""

    def __init__(self, upload_dir: str, url_prefix: str, allowed_types):
        self.upload_dir = Path(upload_dir)
        self.url_prefix = url_prefix.rstrip("/")
        self.allowed_pattern = re.compile("|".join(allowed_types))

    def is_allowed(self, filename: str, mime_type: str) -> bool:
        """Both the extension and the mime type must name an allowed type"""
        extension = Path(filename).suffix.lower().lstrip(".")
        return bool(
            extension
            and self.allowed_pattern.search(extension)
            and self.allowed_pattern.search(mime_type or "")
        )

    async def save(self, filename: str, mime_type: str, content: bytes) -> Attachment:
        unique_suffix = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
        stored_name = f"file-{unique_suffix}{Path(filename).suffix.lower()}"
        path = self.upload_dir / stored_name
        await asyncio.to_thread(self._write, path, content)
        logger.info(f"Stored attachment {filename} as {stored_name}")
        return Attachment(
            name=filename,
            mime_type=mime_type,
            size_bytes=len(content),
            url=f"{self.url_prefix}/{stored_name}",
        )

    @staticmethod
    def _write(path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
