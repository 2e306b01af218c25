"""Versioned configuration store for scoring weights, bands and trigger rules.

Each change writes a complete new document version and deactivates the
previous one in a single transaction. The active version is cached
in-process under the ``("configuration", "active")`` tag; every write
invalidates that tag so the next evaluation reads the new version.

Version 1 is seeded from the built-in defaults the first time the active
configuration is requested on an empty table.
"""

import logging
from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.models import ConfigChangeKind, KPIConfiguration
from src.db.session import async_session_maker
from src.schemas.configuration import (
    ActiveConfiguration,
    KPIConfigDocument,
    MetricDefinition,
    RatingBand,
    TriggerRules,
)
from src.services.cache import TaggedCache
from src.services.configuration_defaults import default_document
from src.services.configuration_validation import parse_document, validate_document
from src.services.errors import ConfigurationError, EntityNotFoundError

logger = logging.getLogger(__name__)

ACTIVE_TAG = ("configuration", "active")

# Shared by every store instance in the process.
configuration_cache = TaggedCache()


class ConfigurationStore:
    """Read and write the active KPI configuration.

    Example:
        >>> store = ConfigurationStore()
        >>> active = await store.get_active()
        >>> active.version
        1
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_maker,
        cache: TaggedCache | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache if cache is not None else configuration_cache

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_active(self) -> ActiveConfiguration:
        """Return the active configuration, seeding defaults on first use.

        Returns:
            ActiveConfiguration: Active version and its validated document.

        Raises:
            ConfigurationError: If the stored active document is invalid.
        """
        cached = self._cache.get(ACTIVE_TAG)
        if cached is not None:
            return cached

        async with self._session_factory() as session:
            row = await self._load_active_row(session)

        if row is None:
            row = await self._seed_defaults()

        active = self._to_active(row)
        self._cache.set(ACTIVE_TAG, active)
        return active

    async def history(self, limit: int = 20) -> list[KPIConfiguration]:
        """List stored versions, newest first.

        Args:
            limit: Maximum number of versions.

        Returns:
            list[KPIConfiguration]: Version rows.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(KPIConfiguration).order_by(KPIConfiguration.version.desc()).limit(limit)
            )
            return list(result.scalars().all())

    async def get_version(self, version: int) -> ActiveConfiguration:
        """Return a specific stored version.

        Raises:
            EntityNotFoundError: If the version does not exist.
        """
        async with self._session_factory() as session:
            row = await session.scalar(select(KPIConfiguration).where(KPIConfiguration.version == version))
        if row is None:
            raise EntityNotFoundError("configuration version", version)
        return self._to_active(row)

    # =========================================================================
    # Writes
    # =========================================================================

    async def update_metrics(
        self,
        metrics: list[MetricDefinition],
        bands: list[RatingBand] | None = None,
        changed_by: UUID | None = None,
    ) -> ActiveConfiguration:
        """Replace the metric definitions and, optionally, the rating bands.

        Args:
            metrics: New metric definitions (every metric exactly once).
            bands: New rating bands; the current bands are kept when omitted.
            changed_by: Staff member making the change.

        Returns:
            ActiveConfiguration: The newly active version.

        Raises:
            ConfigurationError: If the resulting document is invalid.
        """
        current = await self.get_active()
        candidate = current.document.model_copy(
            update={
                "metrics": list(metrics),
                "bands": list(bands) if bands is not None else current.document.bands,
            }
        )
        return await self._write(candidate, ConfigChangeKind.UPDATE_METRICS, changed_by)

    async def update_triggers(self, triggers: TriggerRules, changed_by: UUID | None = None) -> ActiveConfiguration:
        """Replace the rating rules and metric rules.

        Args:
            triggers: New rating and metric rules.
            changed_by: Staff member making the change.

        Returns:
            ActiveConfiguration: The newly active version.

        Raises:
            ConfigurationError: If the resulting document is invalid.
        """
        current = await self.get_active()
        candidate = current.document.model_copy(
            update={
                "rating_rules": list(triggers.rating_rules),
                "metric_rules": list(triggers.metric_rules),
            }
        )
        return await self._write(candidate, ConfigChangeKind.UPDATE_TRIGGERS, changed_by)

    async def import_document(self, raw: Mapping[str, Any], changed_by: UUID | None = None) -> ActiveConfiguration:
        """Replace the whole document, e.g. from a YAML file.

        Raises:
            ConfigurationError: If the document is malformed or invalid.
        """
        return await self._write(parse_document(raw), ConfigChangeKind.IMPORT, changed_by)

    async def reset_to_defaults(self, changed_by: UUID | None = None) -> ActiveConfiguration:
        """Restore the built-in defaults.

        Idempotent: when the active document already equals the defaults no
        new version is written.

        Returns:
            ActiveConfiguration: The active version after the reset.
        """
        current = await self.get_active()
        defaults = default_document()
        if current.document == defaults:
            logger.info("Configuration already at defaults (version %d), reset skipped", current.version)
            return current
        return await self._write(defaults, ConfigChangeKind.RESET, changed_by)

    def invalidate(self) -> None:
        self._cache.invalidate(ACTIVE_TAG)

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    async def _load_active_row(session: AsyncSession) -> KPIConfiguration | None:
        return await session.scalar(
            select(KPIConfiguration)
            .where(KPIConfiguration.is_active.is_(True))
            .order_by(KPIConfiguration.version.desc())
            .limit(1)
        )

    @staticmethod
    def _to_active(row: KPIConfiguration) -> ActiveConfiguration:
        return ActiveConfiguration(
            version=row.version,
            document=parse_document(row.document),
            change_kind=row.change_kind,
            created_at=row.created_at,
        )

    async def _seed_defaults(self) -> KPIConfiguration:
        """Insert version 1 from the defaults, tolerating a concurrent seed."""
        row = KPIConfiguration(
            version=1,
            document=default_document().model_dump(mode="json"),
            change_kind=ConfigChangeKind.SEED,
            is_active=True,
        )
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
            logger.info("Seeded default KPI configuration as version 1")
            return row
        except IntegrityError:
            logger.info("Default KPI configuration seeded concurrently, reloading")
            async with self._session_factory() as session:
                existing = await self._load_active_row(session)
            if existing is None:
                raise ConfigurationError("No active KPI configuration after seeding") from None
            return existing

    async def _write(
        self,
        document: KPIConfigDocument,
        change_kind: ConfigChangeKind,
        changed_by: UUID | None,
    ) -> ActiveConfiguration:
        validate_document(document)
        async with self._session_factory() as session:
            try:
                latest = await session.scalar(select(func.max(KPIConfiguration.version)))
                version = (latest or 0) + 1
                await session.execute(
                    update(KPIConfiguration).where(KPIConfiguration.is_active.is_(True)).values(is_active=False)
                )
                row = KPIConfiguration(
                    version=version,
                    document=document.model_dump(mode="json"),
                    change_kind=change_kind,
                    changed_by_id=changed_by,
                    is_active=True,
                )
                session.add(row)
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ConfigurationError("Configuration was changed concurrently, retry the update") from e
            finally:
                self.invalidate()

        logger.info(
            "KPI configuration version %d written (%s) by %s",
            version,
            change_kind.value,
            changed_by or "system",
        )
        return self._to_active(row)
