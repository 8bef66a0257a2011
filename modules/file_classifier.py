"""Classify uploads into the handling strategy the pipeline applies."""

from __future__ import annotations

from enum import Enum
from pathlib import Path


SNIFF_BYTES = 4096


class FileKind(Enum):
    PDF = "pdf"
    OFFICE = "office"
    IMAGE = "image"
    TEXT = "text"
    UNKNOWN = "unknown"


OFFICE_EXTENSIONS = frozenset({
    "doc", "docx", "docm", "dot", "dotx",
    "xls", "xlsx", "xlsm", "xlt", "xltx",
    "ppt", "pptx", "pps", "ppsx",
    "odt", "ods", "odp", "odg",
    "rtf", "wps", "wpd",
})
IMAGE_EXTENSIONS = frozenset({"png", "jpg", "jpeg", "gif", "bmp", "tif", "tiff", "webp"})
TEXT_EXTENSIONS = frozenset({"txt", "text", "md", "csv", "log"})

# (prefix, kind) checked against the first bytes of the file
_SIGNATURES = (
    (b"%PDF-", FileKind.PDF),
    (b"\x89PNG\r\n\x1a\n", FileKind.IMAGE),
    (b"\xff\xd8\xff", FileKind.IMAGE),
    (b"GIF87a", FileKind.IMAGE),
    (b"GIF89a", FileKind.IMAGE),
    (b"BM", FileKind.IMAGE),
    (b"II*\x00", FileKind.IMAGE),
    (b"MM\x00*", FileKind.IMAGE),
)
_WEBP_RIFF = b"RIFF"
_WEBP_TAG = b"WEBP"


def classify(stored_path: str | Path, original_filename: str) -> FileKind:
    """
    Pick the handling strategy for an upload.

    A PDF header wins over any extension (a PDF renamed to .doc is still a
    PDF); a raster signature wins unless the extension names an office or
    text format, since short prefixes like "BM" occur in text. Office
    formats are recognised by
    extension only, since their containers (ZIP, OLE) are shared with
    non-printable files. Files without a known extension are sniffed for
    plain text. Never raises: unreadable files are UNKNOWN.
    """
    head = _read_head(Path(stored_path))
    extension = _extension(original_filename)

    by_signature = _kind_from_signature(head)
    if by_signature is FileKind.PDF:
        return FileKind.PDF
    if by_signature is FileKind.IMAGE and extension not in OFFICE_EXTENSIONS | TEXT_EXTENSIONS:
        return FileKind.IMAGE

    if extension == "pdf":
        # Claims to be a PDF but lacks the header; let the page counter decide
        return FileKind.UNKNOWN
    if extension in OFFICE_EXTENSIONS:
        return FileKind.OFFICE
    if extension in IMAGE_EXTENSIONS:
        return FileKind.IMAGE
    if extension in TEXT_EXTENSIONS:
        return FileKind.TEXT

    if not extension and _looks_like_text(head):
        return FileKind.TEXT
    return FileKind.UNKNOWN


def _extension(filename: str) -> str:
    name = Path(filename or "").name
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[1].lower()


def _read_head(path: Path) -> bytes:
    try:
        with path.open("rb") as fh:
            return fh.read(SNIFF_BYTES)
    except OSError:
        return b""


def _kind_from_signature(head: bytes) -> FileKind | None:
    for prefix, kind in _SIGNATURES:
        if head.startswith(prefix):
            return kind
    if head[:4] == _WEBP_RIFF and head[8:12] == _WEBP_TAG:
        return FileKind.IMAGE
    return None


def _looks_like_text(head: bytes) -> bool:
    if not head or b"\x00" in head:
        return False
    try:
        head.decode("utf-8")
    except UnicodeDecodeError as exc:
        # A multi-byte character cut off by the sniff window is still text
        return exc.start >= len(head) - 3 and exc.reason == "unexpected end of data"
    return True
