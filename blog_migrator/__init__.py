"""
Top-level package for the WordPress → Supabase blog migration.

This package bundles all components required to read posts from a
WordPress site or export, find and re-host their images on Cloudflare R2,
clean the HTML, and upsert the result into the destination blog table.
Modules are split into subpackages:

* :mod:`blog_migrator.extractors` – post sources and image URL discovery
* :mod:`blog_migrator.parsers` – HTML cleanup and metadata
* :mod:`blog_migrator.migrators` – media transfer, stores and the per-post worker
* :mod:`blog_migrator.models` – pydantic records passed between layers
* :mod:`blog_migrator.utils` – URL rules, errors, reporting and redirects

Orchestration (pagination, concurrency, summary) lives in
:mod:`blog_migrator.migration_tool`.
"""

__version__ = "0.1.0"
