"""Helper modules for the PrintQuotaWeb application."""

__all__ = [
    "converter",
    "estimator",
    "file_classifier",
    "pdf_analyzer",
]
