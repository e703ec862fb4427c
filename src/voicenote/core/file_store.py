"""Local file persistence for documents and audio"""

import asyncio
import re
from datetime import date
from pathlib import Path
from typing import Optional, Union

from loguru import logger


def sanitize_filename(name: str) -> str:
    """
    Reduce a title to a safe lowercase file stem.

    Non-alphanumeric runs become single underscores; leading and trailing
    underscores are stripped. Falls back to "untitled".
    """
    stem = re.sub(r"[^a-z0-9]", "_", name or "", flags=re.IGNORECASE)
    stem = re.sub(r"_+", "_", stem).strip("_").lower()
    return stem or "untitled"


def document_filename(title: str, on: Optional[date] = None) -> str:
    """``<sanitized-title>_<YYYY-MM-DD>.html``"""
    on = on or date.today()
    return f"{sanitize_filename(title)}_{on.isoformat()}.html"


def audio_filename(title: str, extension: str, on: Optional[date] = None) -> str:
    on = on or date.today()
    return f"{sanitize_filename(title)}_{on.isoformat()}.{extension}"


class LocalFileStore:
    """Saves files into one directory; blocking I/O runs off the event loop"""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def _write(self, path: Path, data: Union[str, bytes]) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(data, str):
            path.write_text(data, encoding="utf-8")
        else:
            path.write_bytes(data)
        return path

    async def save_file(self, filename: str, data: Union[str, bytes], mime_type: str) -> Path:
        """Write ``data`` under the store directory and return the path"""
        path = self.directory / Path(filename).name
        await asyncio.to_thread(self._write, path, data)
        logger.info(f"Saved {mime_type} file: {path}")
        return path

    async def read_file(self, path: Union[str, Path]) -> str:
        """Read a text file; relative paths resolve against the store directory"""
        path = Path(path)
        if not path.is_absolute() and not path.exists():
            path = self.directory / path
        return await asyncio.to_thread(path.read_text, encoding="utf-8")
