"""
Parser registry mapping file types to document parsers.
"""

import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..errors import UnsupportedFileType
from .base import BaseParser, ParsedDocument
from .pdf_parser import PdfParser
from .text_parser import TextParser

logger = logging.getLogger(__name__)


def normalize_file_type(file_type: str) -> str:
    """'.PDF' -> 'pdf'"""
    return file_type.strip().lstrip(".").lower()


class ParserRegistry:
    """
    Registry of document parsers keyed by file type.

    Built-in parsers handle ``pdf``, ``txt`` and ``md``; additional parsers
    can be registered at runtime.
    """

    def __init__(self, register_defaults: bool = True):
        self._parsers: Dict[str, BaseParser] = {}
        self._lock = threading.RLock()

        if register_defaults:
            self._register_default_parsers()

    def _register_default_parsers(self) -> None:
        self.register(PdfParser())
        self.register(TextParser())

    def register(self, parser: BaseParser, override: bool = False) -> None:
        """
        Register a parser for every file type it declares.

        Args:
            parser: Parser instance
            override: Replace parsers already registered for the same types
        """
        with self._lock:
            for file_type in parser.file_types:
                key = normalize_file_type(file_type)
                if key in self._parsers and not override:
                    raise ValueError(
                        f"Parser for {key} already registered. Use override=True to replace."
                    )
                self._parsers[key] = parser

            logger.debug(f"Registered {parser.parser_name} for: {parser.file_types}")

    def get_parser(self, file_type: str) -> Optional[BaseParser]:
        with self._lock:
            return self._parsers.get(normalize_file_type(file_type))

    def can_parse(self, file_type: str) -> bool:
        return self.get_parser(file_type) is not None

    def get_supported_types(self) -> List[str]:
        with self._lock:
            return sorted(self._parsers)

    async def parse_file(self, file_path: Union[str, Path], file_type: str) -> ParsedDocument:
        """
        Parse a file with the parser registered for ``file_type``.

        Raises:
            UnsupportedFileType: no parser handles the type
        """
        parser = self.get_parser(file_type)
        if parser is None:
            raise UnsupportedFileType(file_type)
        return await parser.parse(file_path)
