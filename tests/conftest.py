"""Shared fixtures for the PrintQuotaWeb test suite."""

import subprocess
import tempfile
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import pytest
from PIL import Image
from pypdf import PdfWriter

from core.exceptions import DispatchError
from core.store import Store
from models.entities import Account
from services.print_dispatcher import PrintBackend, PrintRequest


# Helpers

def write_pdf(path: Path, pages: int) -> Path:
    """Write a PDF with ``pages`` blank A4 pages."""
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=595, height=842)
    with open(path, "wb") as fh:
        writer.write(fh)
    return path


def write_png(path: Path, size=(120, 80), mode: str = "RGBA") -> Path:
    Image.new(mode, size, (200, 30, 30, 128) if mode == "RGBA" else "red").save(path, "PNG")
    return path


class FixedClock:
    """Callable clock whose time the test moves explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakePrintBackend(PrintBackend):
    """Records submitted requests; fails on demand."""

    def __init__(self, job_id: str = "office-1", fail_with: Optional[Exception] = None):
        self.job_id = job_id
        self.fail_with = fail_with
        self.requests: List[PrintRequest] = []
        self.submitted_bytes: List[bytes] = []

    def submit(self, request: PrintRequest) -> str:
        self.requests.append(request)
        self.submitted_bytes.append(request.file_path.read_bytes())
        if self.fail_with is not None:
            raise self.fail_with
        return self.job_id

    def list_printers(self) -> List[str]:
        return ["office", "color-lab"]


# Fixtures

@pytest.fixture
def store(tmp_path):
    """File-backed SQLite store with schema and default pricing (10 / 30)."""
    s = Store(f"sqlite:///{tmp_path / 'ledger.db'}", busy_timeout_seconds=10.0)
    s.migrate(default_per_page_cents=10, default_color_page_cents=30)
    yield s
    s.dispose()


@pytest.fixture
def clock():
    """Clock fixed at 15 March 2026, local time."""
    return FixedClock(datetime(2026, 3, 15, 12, 0, 0))


@pytest.fixture
def make_account(store, clock):
    """Factory inserting an account whose periods match the fixed clock."""

    def _make(username: str = "alice", **fields) -> int:
        values = {
            "role": "user",
            "balance_cents": 500,
            "month_period": clock.now.strftime("%Y-%m"),
            "year_period": clock.now.strftime("%Y"),
        }
        values.update(fields)
        with store.transaction() as session:
            account = Account(username=username, **values)
            session.add(account)
            session.flush()
            return account.id

    return _make


@pytest.fixture
def load_account(store):
    """Read an account row back (detached)."""

    def _load(user_id: int) -> Account:
        with store.transaction(read_only=True) as session:
            return session.get(Account, user_id)

    return _load


@pytest.fixture
def backend():
    return FakePrintBackend()


@pytest.fixture
def failing_backend():
    return FakePrintBackend(fail_with=DispatchError("printer on fire", printer="office"))


@pytest.fixture
def sample_pdf(tmp_path):
    """A 5-page PDF."""
    return write_pdf(tmp_path / "five.pdf", 5)


@pytest.fixture
def pdf_factory(tmp_path):
    """Factory writing an N-page PDF into tmp_path."""

    def _make(name: str = "doc.pdf", pages: int = 1) -> Path:
        return write_pdf(tmp_path / name, pages)

    return _make


@pytest.fixture
def png_factory(tmp_path):
    """Factory writing a small PNG into tmp_path."""

    def _make(name: str = "pic.png", mode: str = "RGBA") -> Path:
        return write_png(tmp_path / name, mode=mode)

    return _make


class FakeLibreOffice:
    """
    Stand-in for the converter process.

    mode:
        "ok"         writes a PDF with ``pages`` pages into --outdir
        "renamed"    writes the PDF under ``output_name`` instead of <stem>.pdf
        "no_output"  exits 0 without writing anything
        "fail"       exits 1
        "hang"       never finishes until killed
    """

    def __init__(self):
        self.mode = "ok"
        self.pages = 3
        self.output_name = "converted.pdf"
        self.commands: List[list] = []
        self.popen_kwargs: List[dict] = []
        self.killed: List["_FakeProcess"] = []

    def popen(self, cmd, **kwargs):
        self.commands.append(list(cmd))
        self.popen_kwargs.append(kwargs)
        return _FakeProcess(self, list(cmd))

    def kill(self, proc):
        proc.killed = True
        self.killed.append(proc)


class _FakeProcess:
    pid = 4242

    def __init__(self, owner: FakeLibreOffice, cmd: list):
        self.owner = owner
        self.args = cmd
        self.returncode = None
        self.killed = False

    def communicate(self, timeout=None):
        if self.killed:
            self.returncode = -9
            return b"", None

        mode = self.owner.mode
        if mode == "hang":
            time.sleep(min(timeout or 0.01, 0.01))
            raise subprocess.TimeoutExpired(self.args, timeout)

        out_dir = Path(self.args[self.args.index("--outdir") + 1])
        source = Path(self.args[-1])
        if mode == "ok":
            write_pdf(out_dir / f"{source.stem}.pdf", self.owner.pages)
        elif mode == "renamed":
            write_pdf(out_dir / self.owner.output_name, self.owner.pages)
        elif mode == "fail":
            self.returncode = 1
            return b"Error: source file could not be loaded", None

        self.returncode = 0
        return b"convert ok", None


@pytest.fixture
def fake_libreoffice(monkeypatch):
    """Replace the converter subprocess and the process killer."""
    from modules import converter

    fake = FakeLibreOffice()
    monkeypatch.setattr(converter.subprocess, "Popen", fake.popen)
    monkeypatch.setattr(converter, "_kill_process", fake.kill)
    return fake


@pytest.fixture
def scratch_dir(tmp_path, monkeypatch):
    """Route tempfile into an observable directory."""
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(scratch))
    return scratch
