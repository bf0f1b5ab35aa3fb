"""
Media transfer, destination stores and the per-post migrator.

This subpackage downloads images from the legacy host with bounded
retries, uploads them to Cloudflare R2, upserts normalized posts into
Supabase (or a local DuckDB file) and ties those steps together for one
post in :class:`blog_migrator.migrators.post_migrator.PostMigrator`.
"""
