"""
Print backend boundary.

PrintBackend is the narrow "submit a job, get a job id" capability the
submission service depends on. CupsPrintBackend implements it with the CUPS
command line tools (``lp`` / ``lpstat``); the wire protocol is theirs.

Any error raised here after the ledger debit is a post-debit failure: the
caller must refund the account.
"""

from __future__ import annotations

import re
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from core.exceptions import DispatchError, InvalidPrintOptionsError
from logging_config import get_logger
from models.order import MAX_COPIES, MIN_COPIES, VALID_SIDES


logger = get_logger(__name__)

_REQUEST_ID = re.compile(r"request id is (\S+)")
# CUPS queue names: no whitespace, "/" or "#"; a leading "-" would read as an option
_QUEUE_NAME = re.compile(r"^[^\s/#\-][^\s/#]*$")


@dataclass(frozen=True)
class PrintRequest:
    """Everything the backend needs for one job."""

    printer: str
    file_path: Path
    mime_type: str
    username: str
    filename: str
    sides: str = "one-sided"
    is_color: bool = False
    copies: int = 1
    page_range: Optional[str] = None

    def __post_init__(self):
        if not _QUEUE_NAME.match(self.printer or ""):
            raise InvalidPrintOptionsError("printer", self.printer, "a CUPS queue name")
        if self.sides not in VALID_SIDES:
            raise InvalidPrintOptionsError("sides", self.sides, ", ".join(sorted(VALID_SIDES)))
        if not MIN_COPIES <= self.copies <= MAX_COPIES:
            raise InvalidPrintOptionsError("copies", self.copies, f"{MIN_COPIES}-{MAX_COPIES}")


class PrintBackend(ABC):
    """Abstract print backend."""

    @abstractmethod
    def submit(self, request: PrintRequest) -> str:
        """
        Hand a job to the backend.

        Returns:
            Backend job identifier

        Raises:
            DispatchError: On any failure
        """
        raise NotImplementedError

    @abstractmethod
    def list_printers(self) -> List[str]:
        """Names of the destinations jobs can be sent to."""
        raise NotImplementedError


class CupsPrintBackend(PrintBackend):
    """
    CUPS backend using ``lp`` to submit and ``lpstat`` to list queues.

    Copies are sent as one job with ``-n`` so the backend id covers the
    whole request.
    """

    def __init__(
        self,
        lp_path: str = "lp",
        lpstat_path: str = "lpstat",
        server: Optional[str] = None,
        timeout_seconds: float = 30.0,
    ):
        self._lp_path = lp_path
        self._lpstat_path = lpstat_path
        self._server = server
        self._timeout = timeout_seconds

    def submit(self, request: PrintRequest) -> str:
        if not request.file_path.is_file():
            raise DispatchError(f"Print file does not exist: {request.file_path}", printer=request.printer)

        cmd = [
            self._lp_path,
            *self._server_args(),
            "-d", request.printer,
            "-t", request.filename,
            "-U", request.username,
            "-n", str(request.copies),
            "-o", f"sides={request.sides}",
            "-o", f"print-color-mode={'color' if request.is_color else 'monochrome'}",
        ]
        if request.page_range:
            cmd += ["-o", f"page-ranges={request.page_range}"]
        cmd.append(str(request.file_path))

        logger.info(
            f"Submitting '{request.filename}' ({request.mime_type}) to {request.printer} "
            f"for {request.username}: copies={request.copies} sides={request.sides} color={request.is_color}"
        )
        output = self._run(cmd, request.printer)

        match = _REQUEST_ID.search(output)
        if not match:
            raise DispatchError(
                "lp did not report a request id",
                printer=request.printer,
                details={"output": output.strip()},
            )
        job_id = match.group(1)
        logger.info(f"CUPS accepted job {job_id}")
        return job_id

    def list_printers(self) -> List[str]:
        output = self._run([self._lpstat_path, *self._server_args(), "-e"], printer=None)
        return [line.strip() for line in output.splitlines() if line.strip()]

    def _server_args(self) -> List[str]:
        return ["-h", self._server] if self._server else []

    def _run(self, cmd: List[str], printer: Optional[str]) -> str:
        if shutil.which(cmd[0]) is None:
            raise DispatchError(f"CUPS not available: '{cmd[0]}' not found in PATH", printer=printer)

        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, timeout=self._timeout)
        except subprocess.TimeoutExpired as e:
            raise DispatchError(f"{cmd[0]} timed out after {self._timeout:.0f}s", printer=printer) from e
        except OSError as e:
            raise DispatchError(f"{cmd[0]} could not be started: {e}", printer=printer) from e

        if proc.returncode != 0:
            out = ((proc.stdout or "") + (proc.stderr or "")).strip()
            raise DispatchError(
                f"{Path(cmd[0]).name} failed (rc={proc.returncode}): {out}",
                printer=printer,
            )
        return proc.stdout or ""
