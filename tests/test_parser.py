"""
Unit tests for document parsers and the parser registry.
"""

from pathlib import Path
from typing import List, Union

import pytest

from docsync.errors import DocumentParseError, UnsupportedFileType
from docsync.parser.base import BaseParser, ParsedDocument, count_words
from docsync.parser.pdf_parser import PdfParser
from docsync.parser.registry import ParserRegistry, normalize_file_type
from docsync.parser.text_parser import TextParser

from tests.conftest import make_pdf


class CsvParser(BaseParser):
    """Minimal custom parser used to test registration"""

    @property
    def file_types(self) -> List[str]:
        return ["csv"]

    async def parse(self, file_path: Union[str, Path]) -> ParsedDocument:
        path = Path(file_path)
        text = path.read_text().replace(",", " ")
        return ParsedDocument(text=text, metadata=self._base_metadata(path, "csv", text))


class TestCountWords:
    def test_count_words(self):
        assert count_words("one two  three\nfour") == 4
        assert count_words("   ") == 0


class TestPdfParser:
    """Test PDF text extraction"""

    @pytest.mark.asyncio
    async def test_parse_two_page_pdf(self, tmp_path):
        path = tmp_path / "doc.pdf"
        path.write_bytes(make_pdf(["Hello from page one", "Second page text"]))

        parsed = await PdfParser().parse(path)

        assert parsed.metadata["pageCount"] == 2
        assert parsed.metadata["filename"] == "doc.pdf"
        assert parsed.metadata["fileType"] == "pdf"
        assert parsed.metadata["wordCount"] > 0
        assert "page one" in parsed.text
        assert "Second page" in parsed.text

    @pytest.mark.asyncio
    async def test_corrupt_pdf(self, tmp_path):
        path = tmp_path / "broken.pdf"
        path.write_bytes(b"this is not a pdf at all")

        with pytest.raises(DocumentParseError):
            await PdfParser().parse(path)


class TestTextParser:
    """Test plain text and markdown parsing"""

    @pytest.mark.asyncio
    async def test_parse_markdown(self, tmp_path):
        path = tmp_path / "notes.md"
        path.write_text("# Title\n\nSome body text", encoding="utf-8")

        parsed = await TextParser().parse(path)

        assert parsed.text.startswith("# Title")
        assert parsed.metadata == {"filename": "notes.md", "fileType": "md", "wordCount": 5}
        assert parsed.word_count == 5


class TestParserRegistry:
    """Test parser lookup by file type"""

    def test_default_types(self):
        registry = ParserRegistry()
        assert registry.get_supported_types() == ["md", "pdf", "txt"]

    def test_lookup_normalizes_type(self):
        registry = ParserRegistry()
        assert normalize_file_type(".PDF") == "pdf"
        assert isinstance(registry.get_parser(".PDF"), PdfParser)
        assert registry.can_parse("txt")
        assert not registry.can_parse("docx")

    def test_register_custom_parser(self):
        registry = ParserRegistry(register_defaults=False)
        registry.register(CsvParser())

        assert registry.get_supported_types() == ["csv"]

    def test_duplicate_registration_requires_override(self):
        registry = ParserRegistry()
        with pytest.raises(ValueError):
            registry.register(TextParser())

        replacement = TextParser()
        registry.register(replacement, override=True)
        assert registry.get_parser("txt") is replacement

    @pytest.mark.asyncio
    async def test_parse_file_dispatches(self, tmp_path):
        path = tmp_path / "table.csv"
        path.write_text("a,b,c")
        registry = ParserRegistry()
        registry.register(CsvParser())

        parsed = await registry.parse_file(path, "csv")

        assert parsed.metadata["wordCount"] == 3

    @pytest.mark.asyncio
    async def test_unsupported_type(self, tmp_path):
        path = tmp_path / "sheet.xlsx"
        path.write_bytes(b"PK")

        with pytest.raises(UnsupportedFileType) as exc_info:
            await ParserRegistry().parse_file(path, "xlsx")
        assert exc_info.value.file_type == "xlsx"
