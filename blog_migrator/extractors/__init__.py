"""
Extractors for the legacy WordPress site.

This subpackage provides the post sources (WXR export file and the
WordPress REST API), both exposing ``fetch_posts_page(page_index,
page_size)``, and the pattern-based image URL extractor used on post
bodies.
"""
