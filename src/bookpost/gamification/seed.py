"""Badge seed: upsert the validated catalog into badge_definitions."""

from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from bookpost.db.models import BadgeDefinition
from bookpost.db.transactions import insert_for
from bookpost.gamification.catalog import CATALOG_VERSION, BadgeSpec, load_catalog

logger = logging.getLogger(__name__)


async def seed_badges(
    db: AsyncSession,
    catalog: tuple[BadgeSpec, ...] | None = None,
    version: str = CATALOG_VERSION,
) -> int:
    """Upsert all catalog tiers and retire slugs no longer listed. Returns number seeded."""
    if catalog is None:
        catalog = load_catalog()
    seeded = 0
    for spec in catalog:
        stmt = insert_for(db, BadgeDefinition).values(
            slug=spec.slug,
            category=spec.category,
            level=spec.level,
            name=spec.name,
            description=spec.description,
            requirement=spec.requirement,
            metric=spec.metric,
            threshold_value=spec.threshold,
            catalog_version=version,
            earned_count=0,
            is_active=True,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["slug"],
            set_={
                "category": stmt.excluded.category,
                "level": stmt.excluded.level,
                "name": stmt.excluded.name,
                "description": stmt.excluded.description,
                "requirement": stmt.excluded.requirement,
                "metric": stmt.excluded.metric,
                "threshold_value": stmt.excluded.threshold_value,
                "catalog_version": stmt.excluded.catalog_version,
                "is_active": True,
            },
        )
        await db.execute(stmt)
        seeded += 1

    await db.execute(
        update(BadgeDefinition)
        .where(BadgeDefinition.slug.not_in([spec.slug for spec in catalog]))
        .values(is_active=False)
    )

    await db.commit()
    logger.info("Seeded %d badge definitions (catalog %s)", seeded, version)
    return seeded
