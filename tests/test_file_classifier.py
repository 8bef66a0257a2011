"""
Unit tests for upload classification.
"""

import pytest

from modules.file_classifier import FileKind, classify


class TestSignatures:
    """Content signatures take precedence over names."""

    def test_pdf_header(self, pdf_factory):
        path = pdf_factory("a.pdf", 1)
        assert classify(path, "a.pdf") is FileKind.PDF

    def test_pdf_renamed_to_office_extension(self, pdf_factory):
        """A PDF renamed to .doc is still a PDF."""
        path = pdf_factory("upload", 1)
        assert classify(path, "report.doc") is FileKind.PDF

    def test_png_without_extension(self, png_factory):
        path = png_factory("blob")
        assert classify(path, "blob") is FileKind.IMAGE

    def test_jpeg_signature(self, tmp_path):
        path = tmp_path / "photo"
        path.write_bytes(b"\xff\xd8\xff\xe0" + b"\x00" * 32)
        assert classify(path, "photo.bin") is FileKind.IMAGE

    def test_webp_signature(self, tmp_path):
        path = tmp_path / "pic"
        path.write_bytes(b"RIFF\x10\x00\x00\x00WEBPVP8 " + b"\x00" * 16)
        assert classify(path, "pic") is FileKind.IMAGE

    def test_text_starting_with_bmp_prefix(self, tmp_path):
        """Short raster prefixes in a .txt file do not make it an image."""
        path = tmp_path / "notes.txt"
        path.write_text("BMW service notes\n")
        assert classify(path, "notes.txt") is FileKind.TEXT


class TestExtensions:
    """Extension tables decide when no signature matches."""

    @pytest.mark.parametrize("name", ["report.docx", "sheet.XLSX", "slides.pptx", "letter.odt", "memo.rtf"])
    def test_office(self, tmp_path, name):
        path = tmp_path / "upload"
        path.write_bytes(b"PK\x03\x04" + b"\x00" * 64)
        assert classify(path, name) is FileKind.OFFICE

    @pytest.mark.parametrize("name", ["readme.txt", "notes.md", "data.csv", "server.log"])
    def test_text(self, tmp_path, name):
        path = tmp_path / "upload"
        path.write_text("hello\nworld\n")
        assert classify(path, name) is FileKind.TEXT

    def test_pdf_extension_without_header_is_unknown(self, tmp_path):
        """Claims to be a PDF but is not: left to the page counter."""
        path = tmp_path / "fake.pdf"
        path.write_bytes(b"definitely not a pdf")
        assert classify(path, "fake.pdf") is FileKind.UNKNOWN

    def test_unknown_extension(self, tmp_path):
        path = tmp_path / "model.stl"
        path.write_bytes(b"solid cube\x00\x01\x02")
        assert classify(path, "model.stl") is FileKind.UNKNOWN


class TestSniffing:
    """Files without an extension are sniffed for plain text."""

    def test_utf8_text(self, tmp_path):
        path = tmp_path / "README"
        path.write_text("Grüße aus Köln\n", encoding="utf-8")
        assert classify(path, "README") is FileKind.TEXT

    def test_binary_with_nul(self, tmp_path):
        path = tmp_path / "blob"
        path.write_bytes(b"abc\x00def")
        assert classify(path, "blob") is FileKind.UNKNOWN

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty"
        path.write_bytes(b"")
        assert classify(path, "empty") is FileKind.UNKNOWN

    def test_missing_file_never_raises(self, tmp_path):
        assert classify(tmp_path / "gone", "gone") is FileKind.UNKNOWN
        assert classify(tmp_path / "gone", "gone.docx") is FileKind.OFFICE
