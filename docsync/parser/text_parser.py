"""
Plain text and markdown parser.
"""

import logging
from pathlib import Path
from typing import List, Union

import aiofiles

from ..errors import TransientIOError
from .base import BaseParser, ParsedDocument

logger = logging.getLogger(__name__)


class TextParser(BaseParser):
    """Reads UTF-8 text files as-is"""

    @property
    def file_types(self) -> List[str]:
        return ["txt", "md"]

    async def parse(self, file_path: Union[str, Path]) -> ParsedDocument:
        path = Path(file_path)
        try:
            async with aiofiles.open(path, "r", encoding="utf-8", errors="replace") as f:
                text = await f.read()
        except (OSError, IOError) as e:
            raise TransientIOError(f"Cannot read {path}: {e}") from e

        file_type = path.suffix.lstrip(".").lower() or "txt"
        return ParsedDocument(text=text, metadata=self._base_metadata(path, file_type, text))
