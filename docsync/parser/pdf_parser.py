"""
PDF parser built on pypdf.
"""

import asyncio
import logging
from pathlib import Path
from typing import List, Tuple, Union

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from ..errors import DocumentParseError, TransientIOError
from .base import BaseParser, ParsedDocument

logger = logging.getLogger(__name__)


class PdfParser(BaseParser):
    """Extracts page text from PDF documents"""

    @property
    def file_types(self) -> List[str]:
        return ["pdf"]

    async def parse(self, file_path: Union[str, Path]) -> ParsedDocument:
        path = Path(file_path)
        text, page_count = await asyncio.to_thread(self._read_pdf, path)

        metadata = self._base_metadata(path, "pdf", text)
        metadata["pageCount"] = page_count

        logger.debug(f"Parsed {path.name}: {page_count} pages, {metadata['wordCount']} words")
        return ParsedDocument(text=text, metadata=metadata)

    def _read_pdf(self, path: Path) -> Tuple[str, int]:
        try:
            reader = PdfReader(str(path))
            pages = reader.pages
            parts = []
            for index, page in enumerate(pages):
                try:
                    parts.append(page.extract_text() or "")
                except (PdfReadError, ValueError, KeyError) as e:
                    logger.warning(f"Cannot extract text from page {index + 1} of {path.name}: {e}")
                    parts.append("")
            return "\n".join(parts), len(pages)

        except (OSError, IOError) as e:
            raise TransientIOError(f"Cannot read {path}: {e}") from e
        except PdfReadError as e:
            raise DocumentParseError(f"Invalid PDF {path.name}: {e}") from e
