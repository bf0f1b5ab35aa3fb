"""
Utility helpers used by the migration tool.

This subpackage exposes URL classification, the error taxonomy with its
structured JSONL reporting, and redirect map generation.
"""

from .errors import ERRORS, report_error, report_ok
from .redirects import generate_redirects_csv
from .urls import UrlClass, classify_url

__all__ = ["ERRORS", "report_error", "report_ok", "generate_redirects_csv", "UrlClass", "classify_url"]
