"""
Parser interface for turning documents into plain text.
"""

import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Union

from pydantic import BaseModel, Field

_WHITESPACE = re.compile(r"\s+")


def count_words(text: str) -> int:
    """Number of whitespace-separated tokens"""
    return len([word for word in _WHITESPACE.split(text) if word])


class ParsedDocument(BaseModel):
    """Text extracted from a document plus parser metadata"""

    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def word_count(self) -> int:
        return self.metadata.get("wordCount", count_words(self.text))


class BaseParser(ABC):
    """Abstract base class for document parsers"""

    @property
    @abstractmethod
    def file_types(self) -> List[str]:
        """File types handled, without the leading dot (e.g. ``pdf``)"""
        pass

    @property
    def parser_name(self) -> str:
        return self.__class__.__name__

    @abstractmethod
    async def parse(self, file_path: Union[str, Path]) -> ParsedDocument:
        """Extract text and metadata from a file"""
        pass

    def _base_metadata(self, file_path: Path, file_type: str, text: str) -> Dict[str, Any]:
        return {
            "filename": file_path.name,
            "fileType": file_type,
            "wordCount": count_words(text),
        }
