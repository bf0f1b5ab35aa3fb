from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

META_TITLE_LIMIT = 60


def _dedup(values: Optional[Iterable[str]]) -> List[str]:
    seen = set()
    out: List[str] = []
    for item in values or []:
        item = (item or "").strip()
        if item and item not in seen:
            seen.add(item)
            out.append(item)
    return out


def build_meta_title(title: str) -> str:
    title = title or ""
    if len(title) > META_TITLE_LIMIT:
        return title[: META_TITLE_LIMIT - 3] + "..."
    return title


class SourcePost(BaseModel):
    """A post as delivered by the legacy CMS.  Never modified."""

    model_config = ConfigDict(frozen=True)

    slug: str
    title: str = ""
    content: str = ""
    excerpt: Optional[str] = None
    published_at: Optional[datetime] = None
    wp_post_id: Optional[str] = None
    permalink: Optional[str] = None
    author_name: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    meta_description: Optional[str] = None

    @field_validator("categories", "tags", mode="before")
    @classmethod
    def _dedup_terms(cls, v: Optional[Iterable[str]]):
        return _dedup(v)


class NormalizedPost(BaseModel):
    """Destination record, upserted by ``slug``."""

    model_config = ConfigDict(str_strip_whitespace=True)

    slug: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    content: str
    excerpt: str = ""
    reading_time: int = Field(..., ge=1)
    featured_image: Optional[str] = None
    author_name: Optional[str] = None
    published_at: Optional[datetime] = None
    categories: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    image_urls: List[str] = Field(default_factory=list)

    @field_validator("meta_title", mode="before")
    @classmethod
    def _limit_meta_title(cls, v: Optional[str]):
        if v is None:
            return v
        return build_meta_title(v)

    @field_validator("image_urls", "categories", "tags", mode="before")
    @classmethod
    def _dedup_lists(cls, v: Optional[Iterable[str]]):
        return _dedup(v)

    def to_record(self) -> Dict[str, Any]:
        """JSON-ready row for the destination table."""
        return self.model_dump(mode="json")


class MigrationOutcome(BaseModel):
    slug: str
    success: bool
    images_migrated: int = 0
    images_failed: int = 0
    reason: Optional[str] = None
    dry_run: bool = False
    permalink: Optional[str] = None


class MigrationSummary(BaseModel):
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    failures: List[Tuple[str, str]] = Field(default_factory=list)
    images_migrated: int = 0
    images_failed: int = 0
    pages_fetched: int = 0
    next_page: int = 0
    stopped_early: bool = False

    @classmethod
    def from_outcomes(cls, outcomes: Iterable[MigrationOutcome], **fields: Any) -> "MigrationSummary":
        outcomes = list(outcomes)
        failures = [(o.slug, o.reason or "unknown error") for o in outcomes if not o.success]
        return cls(
            total=len(outcomes),
            succeeded=sum(1 for o in outcomes if o.success),
            failed=len(failures),
            failures=failures,
            images_migrated=sum(o.images_migrated for o in outcomes),
            images_failed=sum(o.images_failed for o in outcomes),
            **fields,
        )
