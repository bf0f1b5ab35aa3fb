"""
Generation of redirect mapping CSV files.

The :func:`generate_redirects_csv` helper writes a CSV file containing the
mapping of WordPress permalinks to their URLs on the new site.  The
resulting file is used to configure 301 redirects so that existing links
continue to work after migration.
"""

from __future__ import annotations

import csv
import os
from typing import Iterable, Optional

from blog_migrator.models.post import MigrationOutcome


def new_post_url(slug: str, *, new_base: str, blog_path: str = "/blog") -> str:
    path = "/" + blog_path.strip("/") if blog_path.strip("/") else ""
    return f"{new_base.rstrip('/')}{path}/{slug}"


def generate_redirects_csv(
    outcomes: Iterable[MigrationOutcome],
    *,
    new_base: str,
    blog_path: str = "/blog",
    old_domain: Optional[str] = None,
    out_path: str = "reports/redirect_map.csv",
) -> str:
    """Generate a CSV mapping old WordPress URLs to new blog URLs.

    Parameters
    ----------
    outcomes:
        Per-post outcomes of a run.  Only successful ones are written.
    new_base:
        Base URL of the new site.
    blog_path:
        Path under which the new site serves posts.
    old_domain:
        Base URL of the legacy site, used as ``<old_domain>/<slug>`` when an
        outcome carries no permalink.  Such posts are skipped when omitted.
    out_path:
        Location of the CSV file to be written.  The parent directory is
        created automatically.

    Returns
    -------
    str
        The path of the generated CSV file.
    """
    os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
    with open(out_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["OldURL", "NewURL"])
        for outcome in outcomes:
            if not outcome.success:
                continue
            old_url = outcome.permalink
            if not old_url and old_domain:
                old_url = f"{old_domain.rstrip('/')}/{outcome.slug}"
            if not old_url:
                continue
            writer.writerow([old_url, new_post_url(outcome.slug, new_base=new_base, blog_path=blog_path)])
    return out_path
