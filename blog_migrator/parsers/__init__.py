"""
Parsers and converters used by the migration pipeline.

Currently this subpackage exposes the HTML cleaner from
:mod:`blog_migrator.parsers.html_cleaner`.
"""

from .html_cleaner import calculate_reading_time, clean_content, generate_excerpt

__all__ = ["calculate_reading_time", "clean_content", "generate_excerpt"]
