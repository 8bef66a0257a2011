"""
Unit tests for the CUPS print backend.

``lp`` / ``lpstat`` are never executed; subprocess.run is mocked.
"""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from core.exceptions import DispatchError, InvalidPrintOptionsError
from services.print_dispatcher import CupsPrintBackend, PrintRequest


# Fixtures

@pytest.fixture
def backend():
    return CupsPrintBackend(lp_path="lp", lpstat_path="lpstat", timeout_seconds=7)


@pytest.fixture
def request_for(sample_pdf):
    def _make(**overrides):
        values = {
            "printer": "office",
            "file_path": sample_pdf,
            "mime_type": "application/pdf",
            "username": "alice",
            "filename": "five.pdf",
        }
        values.update(overrides)
        return PrintRequest(**values)

    return _make


@pytest.fixture
def which():
    with patch("services.print_dispatcher.shutil.which", return_value="/usr/bin/lp") as mock_which:
        yield mock_which


def _completed(stdout="", stderr="", returncode=0):
    return MagicMock(stdout=stdout, stderr=stderr, returncode=returncode)


class TestPrintRequest:
    """Options are validated again at the backend boundary."""

    @pytest.mark.parametrize("copies", [0, 101, -3])
    def test_copies_out_of_range(self, request_for, copies):
        with pytest.raises(InvalidPrintOptionsError):
            request_for(copies=copies)

    def test_unknown_sides(self, request_for):
        with pytest.raises(InvalidPrintOptionsError):
            request_for(sides="three-sided")

    @pytest.mark.parametrize("printer", ["", "-o evil", "has space", "a/b"])
    def test_bad_queue_names(self, request_for, printer):
        with pytest.raises(InvalidPrintOptionsError):
            request_for(printer=printer)


class TestSubmit:
    """Job submission through lp."""

    def test_builds_command_and_parses_id(self, backend, request_for, which):
        request = request_for(sides="two-sided-long-edge", is_color=True, copies=3, page_range="1-3,5")

        with patch("services.print_dispatcher.subprocess.run") as mock_run:
            mock_run.return_value = _completed("request id is office-42 (1 file(s))\n")
            job_id = backend.submit(request)

        assert job_id == "office-42"
        cmd = mock_run.call_args.args[0]
        assert cmd[:3] == ["lp", "-d", "office"]
        assert cmd[cmd.index("-t") + 1] == "five.pdf"
        assert cmd[cmd.index("-U") + 1] == "alice"
        assert cmd[cmd.index("-n") + 1] == "3"
        assert "sides=two-sided-long-edge" in cmd
        assert "print-color-mode=color" in cmd
        assert "page-ranges=1-3,5" in cmd
        assert cmd[-1] == str(request.file_path)
        assert mock_run.call_args.kwargs["timeout"] == 7

    def test_monochrome_without_page_range(self, backend, request_for, which):
        with patch("services.print_dispatcher.subprocess.run") as mock_run:
            mock_run.return_value = _completed("request id is office-1 (1 file(s))")
            backend.submit(request_for())

        cmd = mock_run.call_args.args[0]
        assert "print-color-mode=monochrome" in cmd
        assert not any(arg.startswith("page-ranges=") for arg in cmd)

    def test_cups_server(self, request_for, which):
        backend = CupsPrintBackend(server="cups.example:631")
        with patch("services.print_dispatcher.subprocess.run") as mock_run:
            mock_run.return_value = _completed("request id is q-9")
            backend.submit(request_for())

        cmd = mock_run.call_args.args[0]
        assert cmd[1:3] == ["-h", "cups.example:631"]

    def test_non_zero_exit(self, backend, request_for, which):
        with patch("services.print_dispatcher.subprocess.run") as mock_run:
            mock_run.return_value = _completed(stderr="lp: The printer or class does not exist.", returncode=1)
            with pytest.raises(DispatchError, match="does not exist"):
                backend.submit(request_for())

    def test_timeout(self, backend, request_for, which):
        with patch("services.print_dispatcher.subprocess.run", side_effect=subprocess.TimeoutExpired("lp", 7)):
            with pytest.raises(DispatchError, match="timed out"):
                backend.submit(request_for())

    def test_missing_request_id(self, backend, request_for, which):
        with patch("services.print_dispatcher.subprocess.run", return_value=_completed("ok")):
            with pytest.raises(DispatchError, match="request id"):
                backend.submit(request_for())

    def test_lp_not_installed(self, backend, request_for):
        with patch("services.print_dispatcher.shutil.which", return_value=None):
            with pytest.raises(DispatchError, match="CUPS not available"):
                backend.submit(request_for())

    def test_missing_file(self, backend, request_for, tmp_path, which):
        with pytest.raises(DispatchError, match="does not exist"):
            backend.submit(request_for(file_path=tmp_path / "gone.pdf"))


class TestListPrinters:
    """Queue listing through lpstat -e."""

    def test_lists_queues(self, backend, which):
        with patch("services.print_dispatcher.subprocess.run") as mock_run:
            mock_run.return_value = _completed("office\ncolor-lab\n\n")
            assert backend.list_printers() == ["office", "color-lab"]

        assert mock_run.call_args.args[0] == ["lpstat", "-e"]

    def test_lpstat_failure(self, backend, which):
        with patch("services.print_dispatcher.subprocess.run", return_value=_completed(returncode=1)):
            with pytest.raises(DispatchError):
                backend.list_printers()
