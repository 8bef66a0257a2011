"""
Print order data models.

These models describe one print request as it flows through the pipeline:
identity -> options -> frozen order handed to the submission service.

Thread Safety:
    All models here are frozen dataclasses. A PrintOrder is built once on the
    request thread and never modified afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from core.exceptions import InvalidPrintOptionsError


MIN_COPIES = 1
MAX_COPIES = 100

SIDES_ONE_SIDED = "one-sided"
SIDES_LONG_EDGE = "two-sided-long-edge"
SIDES_SHORT_EDGE = "two-sided-short-edge"
VALID_SIDES = (SIDES_ONE_SIDED, SIDES_LONG_EDGE, SIDES_SHORT_EDGE)

_TRUE_VALUES = frozenset({"true", "1", "on", "yes"})


def parse_flag(value: Optional[str]) -> bool:
    """Interpret an HTML form checkbox / boolean field."""
    return (value or "").strip().lower() in _TRUE_VALUES


@dataclass(frozen=True)
class Identity:
    """
    Verified caller identity supplied by the external auth layer.

    The core trusts these values without re-validation.
    """

    user_id: int
    username: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass(frozen=True)
class PrintOptions:
    """
    Print options chosen by the user.

    Copies are limited to 1..100 and sides to the IPP keywords; anything
    else is rejected before the upload is even stored.
    """

    sides: str = SIDES_ONE_SIDED
    """IPP sides keyword."""

    is_color: bool = False
    """Print in color (billed at the color page price)."""

    copies: int = 1
    """Number of copies, forwarded to the print backend."""

    page_range: str = ""
    """Opaque page range (e.g. "1-3,7"), forwarded unchanged."""

    def __post_init__(self):
        if self.sides not in VALID_SIDES:
            raise InvalidPrintOptionsError("sides", self.sides, ", ".join(VALID_SIDES))
        if isinstance(self.copies, bool) or not isinstance(self.copies, int):
            raise InvalidPrintOptionsError("copies", self.copies, f"{MIN_COPIES}-{MAX_COPIES}")
        if not MIN_COPIES <= self.copies <= MAX_COPIES:
            raise InvalidPrintOptionsError("copies", self.copies, f"{MIN_COPIES}-{MAX_COPIES}")

    @property
    def is_duplex(self) -> bool:
        return self.sides.startswith("two-sided")

    @classmethod
    def from_form(cls, form: Mapping[str, str]) -> "PrintOptions":
        """
        Build options from submitted form fields.

        ``sides`` wins over the legacy boolean ``duplex`` field; an empty
        ``copies`` means one copy.

        Raises:
            InvalidPrintOptionsError: If copies or sides are out of range
        """
        sides = (form.get("sides") or "").strip()
        if not sides:
            sides = SIDES_LONG_EDGE if parse_flag(form.get("duplex")) else SIDES_ONE_SIDED

        copies_raw = (form.get("copies") or "").strip()
        if copies_raw:
            try:
                copies = int(copies_raw)
            except ValueError:
                raise InvalidPrintOptionsError("copies", copies_raw, f"{MIN_COPIES}-{MAX_COPIES}")
        else:
            copies = 1

        return cls(
            sides=sides,
            is_color=parse_flag(form.get("color")),
            copies=copies,
            page_range=(form.get("pageRange") or "").strip(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sides": self.sides,
            "isColor": self.is_color,
            "isDuplex": self.is_duplex,
            "copies": self.copies,
            "pageRange": self.page_range,
        }


@dataclass(frozen=True)
class StoredUpload:
    """An upload written to the upload folder under a collision-free name."""

    path: Path
    """Absolute path of the stored file."""

    relpath: str
    """Path relative to the upload folder (recorded on the job)."""

    original_filename: str
    """Filename as uploaded by the user (used for type detection and job title)."""

    content_type: Optional[str] = None
    """Content type announced by the client, if any."""


@dataclass(frozen=True)
class PrintOrder:
    """
    Immutable description of one print submission.

    Built on the request thread after the upload has been written to disk.
    """

    printer: str
    """Destination printer (CUPS queue name)."""

    upload: StoredUpload
    options: PrintOptions
