"""
Document conversion pipeline.

Turns an arbitrary upload into something the print backend can take, and
works out how many pages will be billed.

Per file kind:
    PDF      count pages from the PDF structure, print as-is
    OFFICE   LibreOffice --convert-to pdf (bounded, killable), count pages
    IMAGE    Pillow -> single-page PDF, always 1 page
    TEXT     estimate pages from wrapped line count, render with fpdf2
    UNKNOWN  try as PDF, else 1 estimated page, print as-is

RESOURCE SCOPING:
    prepare() is a context manager. Every intermediate artifact lives in one
    temporary directory that is removed when the block exits, whether it
    exits normally, with an error, or through cancellation. The converter
    process is killed (process group on POSIX) on timeout or cancellation.

Usage:
    pipeline = DocumentPipeline(ConverterSettings.from_config(app.config))

    with pipeline.prepare(stored_path, "report.docx") as doc:
        print(doc.pages, doc.estimated)
        backend.submit(..., doc.print_path, doc.mime_type, ...)
    # converted files are gone here
"""

from __future__ import annotations

import logging
import math
import mimetypes
import os
import re
import signal
import subprocess
import tempfile
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Mapping, NamedTuple, Optional

from fpdf import FPDF
from fpdf.errors import FPDFException
from PIL import Image, ImageOps

from core.exceptions import ConversionError, PageCountError
from logging_config import get_logger
from modules.file_classifier import FileKind, classify
from modules.pdf_analyzer import count_pdf_pages, read_pdf_pages_or_none


logger = get_logger(__name__)

PDF_MIME = "application/pdf"
OCTET_STREAM = "application/octet-stream"

# Poll interval while waiting on the converter (bounds cancellation latency)
POLL_INTERVAL_SECONDS = 0.25

# A4 in inches, used to pick an image resolution that fits the page
A4_WIDTH_IN = 8.27
A4_HEIGHT_IN = 11.69

TEXT_FONT_SIZE_PT = 10
TEXT_LINE_HEIGHT_MM = 4.2

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")


@dataclass(frozen=True)
class ConverterSettings:
    """Tunables for the conversion pipeline (see Config)."""

    libreoffice_path: str = "libreoffice"
    timeout_seconds: float = 60.0
    text_lines_per_page: int = 60
    text_chars_per_line: int = 80
    text_font_path: str = ""

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ConverterSettings":
        return cls(
            libreoffice_path=config.get("LIBREOFFICE_PATH", cls.libreoffice_path),
            timeout_seconds=float(config.get("CONVERT_TIMEOUT_SECONDS", cls.timeout_seconds)),
            text_lines_per_page=int(config.get("TEXT_LINES_PER_PAGE", cls.text_lines_per_page)),
            text_chars_per_line=int(config.get("TEXT_CHARS_PER_LINE", cls.text_chars_per_line)),
            text_font_path=config.get("TEXT_FONT_PATH", "") or "",
        )


@dataclass(frozen=True)
class PreparedDocument:
    """
    A document ready to be billed and printed.

    ``print_path`` is only valid inside the prepare() block that produced it.
    """

    kind: FileKind
    pages: int
    estimated: bool
    print_path: Path
    mime_type: str

    @property
    def passed_through(self) -> bool:
        """True when the upload could not be read and is forwarded unchanged."""
        return self.kind is FileKind.UNKNOWN and self.estimated


class _HandlerResult(NamedTuple):
    pages: int
    estimated: bool
    print_path: Path
    mime_type: str


class DocumentPipeline:
    """
    Classifies uploads and runs the matching conversion handler.

    Stateless apart from its settings; one instance is shared by all
    request threads.
    """

    def __init__(self, settings: Optional[ConverterSettings] = None, logger: Optional[logging.Logger] = None):
        self.settings = settings or ConverterSettings()
        self.logger = logger or globals()["logger"]

        self._handlers: Dict[FileKind, Callable[..., _HandlerResult]] = {
            FileKind.PDF: self._prepare_pdf,
            FileKind.OFFICE: self._prepare_office,
            FileKind.IMAGE: self._prepare_image,
            FileKind.TEXT: self._prepare_text,
            FileKind.UNKNOWN: self._prepare_unknown,
        }
        missing = set(FileKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No conversion handler for: {sorted(k.value for k in missing)}")

    @contextmanager
    def prepare(
        self,
        stored_path: str | Path,
        original_filename: str,
        cancel: Optional[threading.Event] = None,
    ) -> Iterator[PreparedDocument]:
        """
        Classify, convert and count pages of an upload.

        Args:
            stored_path: Upload on disk
            original_filename: Name the user uploaded (drives classification)
            cancel: Optional event; when set, a running conversion is killed.
                The HTTP routes leave it unset and rely on the timeout.

        Yields:
            PreparedDocument with pages >= 1

        Raises:
            PageCountError: PDF structure unreadable
            ConversionError: Converter failed, timed out, or was cancelled
        """
        source = Path(stored_path)
        kind = classify(source, original_filename)
        self.logger.info(f"Preparing '{original_filename}' as {kind.value}")

        with tempfile.TemporaryDirectory(prefix="convert-", ignore_cleanup_errors=True) as tmp:
            result = self._handlers[kind](source, original_filename, Path(tmp), cancel)

            pages = result.pages
            if pages < 1:
                self.logger.debug(f"Clamping page count {pages} to 1")
                pages = 1

            yield PreparedDocument(
                kind=kind,
                pages=pages,
                estimated=result.estimated,
                print_path=result.print_path,
                mime_type=result.mime_type,
            )

    # =========================================================================
    # HANDLERS - one per FileKind
    # =========================================================================

    def _prepare_pdf(self, source: Path, filename: str, workdir: Path, cancel) -> _HandlerResult:
        pages = count_pdf_pages(source)
        return _HandlerResult(pages, False, source, PDF_MIME)

    def _prepare_office(self, source: Path, filename: str, workdir: Path, cancel) -> _HandlerResult:
        pdf_path = convert_office_to_pdf(
            source,
            workdir,
            libreoffice_path=self.settings.libreoffice_path,
            timeout_seconds=self.settings.timeout_seconds,
            cancel=cancel,
            logger=self.logger,
        )
        pages = count_pdf_pages(pdf_path)
        return _HandlerResult(pages, False, pdf_path, PDF_MIME)

    def _prepare_image(self, source: Path, filename: str, workdir: Path, cancel) -> _HandlerResult:
        pdf_path = convert_image_to_pdf(source, workdir / f"{source.stem}.pdf")
        return _HandlerResult(1, False, pdf_path, PDF_MIME)

    def _prepare_text(self, source: Path, filename: str, workdir: Path, cancel) -> _HandlerResult:
        text = read_text_file(source)
        pages = estimate_text_pages(
            text,
            chars_per_line=self.settings.text_chars_per_line,
            lines_per_page=self.settings.text_lines_per_page,
        )
        pdf_path = render_text_to_pdf(text, workdir / f"{source.stem}.pdf", font_path=self.settings.text_font_path)
        return _HandlerResult(pages, True, pdf_path, PDF_MIME)

    def _prepare_unknown(self, source: Path, filename: str, workdir: Path, cancel) -> _HandlerResult:
        pages = read_pdf_pages_or_none(source)
        if pages is not None:
            return _HandlerResult(pages, False, source, PDF_MIME)

        self.logger.warning(f"Cannot determine page count of '{filename}', billing 1 estimated page")
        mime_type = mimetypes.guess_type(filename)[0] or OCTET_STREAM
        if mime_type == PDF_MIME:
            # Named .pdf but no readable PDF inside
            mime_type = OCTET_STREAM
        return _HandlerResult(1, True, source, mime_type)


# =============================================================================
# OFFICE CONVERSION
# =============================================================================

def convert_office_to_pdf(
    input_path: Path,
    workdir: Path,
    *,
    libreoffice_path: str = "libreoffice",
    timeout_seconds: float = 60.0,
    cancel: Optional[threading.Event] = None,
    logger: Optional[logging.Logger] = None,
) -> Path:
    """
    Convert an office document with headless LibreOffice.

    The converter writes into ``workdir/out`` and uses a private profile in
    ``workdir/profile`` so concurrent conversions do not fight over the
    shared user profile lock.

    Returns:
        Path of the produced PDF (inside ``workdir``)

    Raises:
        ConversionError: Converter missing, non-zero exit, timeout,
            cancellation, or no PDF produced
    """
    log = logger or globals()["logger"]
    out_dir = workdir / "out"
    profile_dir = workdir / "profile"
    out_dir.mkdir(parents=True, exist_ok=True)
    profile_dir.mkdir(parents=True, exist_ok=True)

    cmd = [
        libreoffice_path,
        f"-env:UserInstallation={profile_dir.resolve().as_uri()}",
        "--headless",
        "--convert-to", "pdf",
        "--outdir", str(out_dir),
        str(input_path),
    ]
    log.debug(f"Running converter: {' '.join(cmd)}")

    try:
        proc = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            start_new_session=(os.name == "posix"),
        )
    except OSError as exc:
        raise ConversionError(f"Converter not available: {exc}", filename=input_path.name) from exc

    returncode, output = _wait_bounded(proc, timeout_seconds, cancel, input_path.name)
    if returncode != 0:
        raise ConversionError(
            f"Converter exited with status {returncode}",
            filename=input_path.name,
            details={"output": output.strip()[-2000:]},
        )

    expected = out_dir / f"{input_path.stem}.pdf"
    if expected.exists():
        return expected

    # Some converters normalise the output name
    matches = sorted(out_dir.glob("*.pdf"))
    if not matches:
        raise ConversionError("Conversion produced no PDF", filename=input_path.name)
    if len(matches) > 1:
        log.warning(f"Converter produced {len(matches)} PDFs, using {matches[0].name}")
    return matches[0]


def _wait_bounded(
    proc: subprocess.Popen,
    timeout_seconds: float,
    cancel: Optional[threading.Event],
    filename: str,
) -> tuple[int, str]:
    """Wait for the converter; kill it on timeout or cancellation."""
    deadline = time.monotonic() + timeout_seconds
    while True:
        if cancel is not None and cancel.is_set():
            _abort(proc)
            raise ConversionError("Conversion cancelled", filename=filename)

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            _abort(proc)
            raise ConversionError(f"Conversion timed out after {timeout_seconds:.0f}s", filename=filename)

        try:
            out, _ = proc.communicate(timeout=min(POLL_INTERVAL_SECONDS, remaining))
        except subprocess.TimeoutExpired:
            continue
        return proc.returncode, (out or b"").decode("utf-8", errors="replace")


def _abort(proc: subprocess.Popen) -> None:
    _kill_process(proc)
    try:
        proc.communicate(timeout=5)
    except subprocess.TimeoutExpired:
        logger.error(f"Converter process {proc.pid} did not exit after kill")


def _kill_process(proc: subprocess.Popen) -> None:
    """Kill the converter and anything it spawned (soffice forks soffice.bin)."""
    if os.name == "posix":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except (ProcessLookupError, PermissionError):
            pass
    proc.kill()


# =============================================================================
# IMAGE CONVERSION
# =============================================================================

def convert_image_to_pdf(source: Path, out_path: Path) -> Path:
    """
    Render the first frame of a raster image as a single-page PDF.

    Transparency is flattened onto white and EXIF rotation applied. The
    resolution is chosen so the image fits an A4 page.

    Raises:
        ConversionError: If Pillow cannot read or write the image
    """
    try:
        with Image.open(source) as img:
            img.seek(0)
            frame = ImageOps.exif_transpose(img)
            if frame.mode in ("RGBA", "LA") or (frame.mode == "P" and "transparency" in frame.info):
                rgba = frame.convert("RGBA")
                flattened = Image.new("RGB", rgba.size, "white")
                flattened.paste(rgba, mask=rgba.getchannel("A"))
                frame = flattened
            elif frame.mode not in ("1", "L", "RGB", "CMYK"):
                frame = frame.convert("RGB")

            width, height = frame.size
            resolution = max(72.0, width / A4_WIDTH_IN, height / A4_HEIGHT_IN)
            frame.save(out_path, "PDF", resolution=resolution)
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        raise ConversionError(f"Image conversion failed: {exc}", filename=source.name) from exc
    return out_path


# =============================================================================
# PLAIN TEXT
# =============================================================================

def read_text_file(source: Path) -> str:
    """
    Read a text upload, UTF-8 first, Latin-1 as the never-failing fallback.

    Raises:
        PageCountError: If the file cannot be read
    """
    try:
        raw = source.read_bytes()
    except OSError as exc:
        raise PageCountError(f"Failed to read text: {exc}", filename=source.name) from exc
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def estimate_text_pages(text: str, chars_per_line: int = 80, lines_per_page: int = 60) -> int:
    """
    Estimate printed pages of plain text.

    Long lines wrap at ``chars_per_line``; a form feed starts a new page.
    """
    pages = 0
    for chunk in text.split("\f"):
        lines = chunk.splitlines() or [""]
        printed_lines = sum(
            max(1, math.ceil(len(line.expandtabs(4)) / chars_per_line)) for line in lines
        )
        pages += max(1, math.ceil(printed_lines / lines_per_page))
    return max(1, pages)


def render_text_to_pdf(text: str, out_path: Path, font_path: str = "") -> Path:
    """
    Typeset plain text onto A4 pages.

    Without ``font_path`` the built-in Courier font is used, which only
    covers Latin-1; other characters are replaced.

    Raises:
        ConversionError: If rendering or writing fails
    """
    body = _CONTROL_CHARS.sub("", text.replace("\f", "\n").expandtabs(4))
    try:
        pdf = FPDF(format="A4")
        pdf.set_auto_page_break(auto=True, margin=15)
        pdf.add_page()
        if font_path:
            pdf.add_font("body", fname=font_path)
            pdf.set_font("body", size=TEXT_FONT_SIZE_PT)
        else:
            pdf.set_font("Courier", size=TEXT_FONT_SIZE_PT)
            body = body.encode("latin-1", errors="replace").decode("latin-1")
        pdf.multi_cell(0, TEXT_LINE_HEIGHT_MM, body)
        pdf.output(str(out_path))
    except (FPDFException, OSError, RuntimeError, ValueError) as exc:
        raise ConversionError(f"Text conversion failed: {exc}", filename=out_path.name) from exc
    return out_path
