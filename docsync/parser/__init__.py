"""
Document parsers for docsync.
"""

from .base import BaseParser, ParsedDocument, count_words
from .pdf_parser import PdfParser
from .registry import ParserRegistry
from .text_parser import TextParser

__all__ = [
    "BaseParser",
    "ParsedDocument",
    "ParserRegistry",
    "PdfParser",
    "TextParser",
    "count_words",
]
