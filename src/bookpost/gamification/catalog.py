"""Versioned badge catalog.

The catalog is the single source of badge tiers. Levels within a category
are contiguous from 1 and their thresholds strictly increase, so earning
level N always implies levels 1..N-1 have been met.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

CATALOG_VERSION = "2026.1"

# Metrics a badge threshold can be measured against.
METRICS = frozenset({
    "streak_days",
    "max_streak_days",
    "total_duration",
    "total_days",
    "books_finished",
    "books_read",
})

HOUR = 3600

BADGE_CATALOG: list[dict] = [
    # Reading streak
    {
        "slug": "streak_7_days",
        "category": "reading_streak",
        "level": 1,
        "name": "7-Day Streak",
        "requirement": "Read for 7 consecutive days",
        "description": "Building a habit starts here",
        "metric": "streak_days",
        "threshold": 7,
    },
    {
        "slug": "streak_30_days",
        "category": "reading_streak",
        "level": 2,
        "name": "30-Day Streak",
        "requirement": "Read for 30 consecutive days",
        "description": "A month of dedication",
        "metric": "streak_days",
        "threshold": 30,
    },
    {
        "slug": "streak_90_days",
        "category": "reading_streak",
        "level": 3,
        "name": "90-Day Streak",
        "requirement": "Read for 90 consecutive days",
        "description": "A quarter of consistency",
        "metric": "streak_days",
        "threshold": 90,
    },
    {
        "slug": "streak_180_days",
        "category": "reading_streak",
        "level": 4,
        "name": "180-Day Streak",
        "requirement": "Read for 180 consecutive days",
        "description": "Half a year strong",
        "metric": "streak_days",
        "threshold": 180,
    },
    {
        "slug": "streak_365_days",
        "category": "reading_streak",
        "level": 5,
        "name": "365-Day Streak",
        "requirement": "Read for 365 consecutive days",
        "description": "A full year of reading!",
        "metric": "streak_days",
        "threshold": 365,
    },
    {
        "slug": "streak_1000_days",
        "category": "reading_streak",
        "level": 6,
        "name": "1000-Day Streak",
        "requirement": "Read for 1000 consecutive days",
        "description": "Legendary dedication",
        "metric": "streak_days",
        "threshold": 1000,
    },
    # Reading duration (thresholds in seconds)
    {
        "slug": "hours_100",
        "category": "reading_duration",
        "level": 1,
        "name": "100 Hours Read",
        "requirement": "Accumulate 100 hours of reading",
        "description": "Your reading journey begins",
        "metric": "total_duration",
        "threshold": 100 * HOUR,
    },
    {
        "slug": "hours_500",
        "category": "reading_duration",
        "level": 2,
        "name": "500 Hours Read",
        "requirement": "Accumulate 500 hours of reading",
        "description": "A serious reader",
        "metric": "total_duration",
        "threshold": 500 * HOUR,
    },
    {
        "slug": "hours_1000",
        "category": "reading_duration",
        "level": 3,
        "name": "1000 Hours Read",
        "requirement": "Accumulate 1000 hours of reading",
        "description": "Master reader status",
        "metric": "total_duration",
        "threshold": 1000 * HOUR,
    },
    {
        "slug": "hours_2000",
        "category": "reading_duration",
        "level": 4,
        "name": "2000 Hours Read",
        "requirement": "Accumulate 2000 hours of reading",
        "description": "Expert level achieved",
        "metric": "total_duration",
        "threshold": 2000 * HOUR,
    },
    {
        "slug": "hours_3000",
        "category": "reading_duration",
        "level": 5,
        "name": "3000 Hours Read",
        "requirement": "Accumulate 3000 hours of reading",
        "description": "Scholar status",
        "metric": "total_duration",
        "threshold": 3000 * HOUR,
    },
    {
        "slug": "hours_5000",
        "category": "reading_duration",
        "level": 6,
        "name": "5000 Hours Read",
        "requirement": "Accumulate 5000 hours of reading",
        "description": "Legendary reader",
        "metric": "total_duration",
        "threshold": 5000 * HOUR,
    },
    # Reading days
    {
        "slug": "days_100",
        "category": "reading_days",
        "level": 1,
        "name": "100 Days Read",
        "requirement": "Read on 100 different days",
        "description": "Century of reading days",
        "metric": "total_days",
        "threshold": 100,
    },
    {
        "slug": "days_200",
        "category": "reading_days",
        "level": 2,
        "name": "200 Days Read",
        "requirement": "Read on 200 different days",
        "description": "Double century",
        "metric": "total_days",
        "threshold": 200,
    },
    {
        "slug": "days_365",
        "category": "reading_days",
        "level": 3,
        "name": "365 Days Read",
        "requirement": "Read on 365 different days",
        "description": "A year worth of reading",
        "metric": "total_days",
        "threshold": 365,
    },
    {
        "slug": "days_500",
        "category": "reading_days",
        "level": 4,
        "name": "500 Days Read",
        "requirement": "Read on 500 different days",
        "description": "Half a thousand",
        "metric": "total_days",
        "threshold": 500,
    },
    {
        "slug": "days_1000",
        "category": "reading_days",
        "level": 5,
        "name": "1000 Days Read",
        "requirement": "Read on 1000 different days",
        "description": "Millennial reader",
        "metric": "total_days",
        "threshold": 1000,
    },
    # Books finished
    {
        "slug": "books_10",
        "category": "books_finished",
        "level": 1,
        "name": "10 Books Finished",
        "requirement": "Finish reading 10 books",
        "description": "First milestone",
        "metric": "books_finished",
        "threshold": 10,
    },
    {
        "slug": "books_50",
        "category": "books_finished",
        "level": 2,
        "name": "50 Books Finished",
        "requirement": "Finish reading 50 books",
        "description": "Avid reader",
        "metric": "books_finished",
        "threshold": 50,
    },
    {
        "slug": "books_100",
        "category": "books_finished",
        "level": 3,
        "name": "100 Books Finished",
        "requirement": "Finish reading 100 books",
        "description": "Century of books",
        "metric": "books_finished",
        "threshold": 100,
    },
    {
        "slug": "books_200",
        "category": "books_finished",
        "level": 4,
        "name": "200 Books Finished",
        "requirement": "Finish reading 200 books",
        "description": "Bookworm elite",
        "metric": "books_finished",
        "threshold": 200,
    },
    {
        "slug": "books_500",
        "category": "books_finished",
        "level": 5,
        "name": "500 Books Finished",
        "requirement": "Finish reading 500 books",
        "description": "Library conqueror",
        "metric": "books_finished",
        "threshold": 500,
    },
    {
        "slug": "books_1000",
        "category": "books_finished",
        "level": 6,
        "name": "1000 Books Finished",
        "requirement": "Finish reading 1000 books",
        "description": "The ultimate bibliophile",
        "metric": "books_finished",
        "threshold": 1000,
    },
]


class BadgeSpec(BaseModel):
    """One validated catalog tier."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    slug: str = Field(min_length=1, max_length=64)
    category: str = Field(min_length=1, max_length=32)
    level: int = Field(ge=1)
    name: str = Field(min_length=1, max_length=128)
    metric: str
    threshold: int
    requirement: str | None = None
    description: str | None = None

    @field_validator("metric")
    @classmethod
    def known_metric(cls, v: str) -> str:
        if v not in METRICS:
            raise ValueError(f"Unknown metric {v!r}")
        return v

    @field_validator("threshold")
    @classmethod
    def positive_threshold(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Badge threshold must be positive")
        return v


class BadgeCatalog(BaseModel):
    """A full catalog version, ordered by (category, level)."""

    model_config = ConfigDict(frozen=True)

    version: str = CATALOG_VERSION
    badges: tuple[BadgeSpec, ...]

    @field_validator("badges")
    @classmethod
    def consistent_tiers(cls, badges: tuple[BadgeSpec, ...]) -> tuple[BadgeSpec, ...]:
        """One metric per category, levels contiguous from 1, thresholds strictly increasing."""
        slugs = [b.slug for b in badges]
        if len(slugs) != len(set(slugs)):
            raise ValueError("Duplicate badge slug in catalog")

        by_category: dict[str, list[BadgeSpec]] = {}
        for badge in badges:
            by_category.setdefault(badge.category, []).append(badge)

        ordered: list[BadgeSpec] = []
        for category in sorted(by_category):
            tiers = sorted(by_category[category], key=lambda b: b.level)
            if len({b.metric for b in tiers}) != 1:
                raise ValueError(f"Category {category!r} mixes metrics")
            if [b.level for b in tiers] != list(range(1, len(tiers) + 1)):
                raise ValueError(f"Category {category!r} levels must be contiguous from 1")
            for lower, higher in zip(tiers, tiers[1:]):
                if higher.threshold <= lower.threshold:
                    raise ValueError(
                        f"Category {category!r}: level {higher.level} threshold must exceed level {lower.level}"
                    )
            ordered.extend(tiers)
        return tuple(ordered)


def load_catalog(entries: list[dict] | None = None) -> tuple[BadgeSpec, ...]:
    """Validate catalog entries and return them ordered by (category, level).

    Raises ``pydantic.ValidationError`` (a ``ValueError``) on any malformed tier.
    """
    if entries is None:
        entries = BADGE_CATALOG
    return BadgeCatalog(badges=entries).badges
