"""
Cache reconciler for ovscache.

The reconciler applies TableUpdates batches to the OvsCache. It is the only
writer of the cache. It ensures:
- Row cache and typed caches change together, table by table
- One malformed row never aborts the rest of the batch
- Re-applying a batch leaves the cache unchanged

Invariants:
    - Batches are applied in the order they are handed in
    - Writer locks are held for one table at a time, never a whole batch
    - Rows are decoded before the writer lock is taken
    - Decode errors are logged and counted, never raised

How to change safely:
    - New entity kinds need a decoder in entities.DECODERS and a TypedCache
    - Test idempotency by applying the same batch twice
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from .cache import OvsCache
from .entities import Entity, EntityKind, decode_entity
from .errors import DecodeError
from .updates import RowUpdate, TableUpdates

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """Result of applying one batch.

    Attributes:
        upserted: Rows inserted or replaced
        deleted: Rows removed from the cache
        decode_errors: Rows kept raw whose typed decoding failed
    """

    upserted: int = 0
    deleted: int = 0
    decode_errors: list[DecodeError] = field(default_factory=list)


class CacheReconciler:
    """Applies update batches to an OvsCache.

    Thread safety:
        apply() may run concurrently with any number of readers. Callers
        must serialize apply() calls themselves (the UpdateMonitor does) so
        that batches land in arrival order.

    Example:
        >>> reconciler = CacheReconciler(cache)
        >>> reconciler.apply(TableUpdates.from_json(initial))
    """

    def __init__(self, cache: OvsCache) -> None:
        self.cache = cache
        self._batches_applied = 0
        self._decode_error_count = 0

    def apply(self, batch: TableUpdates) -> ApplyResult:
        """Apply one batch of row updates.

        Args:
            batch: Updates to apply

        Returns:
            ApplyResult summarizing the changes
        """
        result = ApplyResult()

        for table, rows in batch.tables.items():
            kind = EntityKind.for_table(table)
            prepared = [
                (uuid, update, self._decode(kind, table, uuid, update, result))
                for uuid, update in rows.items()
            ]

            with self.cache.write_table(table) as writer:
                for uuid, update, entity in prepared:
                    if update.is_delete:
                        if writer.delete(uuid):
                            result.deleted += 1
                    else:
                        writer.upsert(uuid, update.after, entity)
                        result.upserted += 1

        self._batches_applied += 1
        self._decode_error_count += len(result.decode_errors)
        logger.debug(
            "Applied update batch",
            extra={
                "tables": len(batch.tables),
                "upserted": result.upserted,
                "deleted": result.deleted,
                "decode_errors": len(result.decode_errors),
            },
        )
        return result

    def _decode(
        self,
        kind: Optional[EntityKind],
        table: str,
        uuid: str,
        update: RowUpdate,
        result: ApplyResult,
    ) -> Optional[Entity]:
        if kind is None or update.is_delete:
            return None
        try:
            return decode_entity(kind, uuid, update.after)
        except DecodeError as e:
            result.decode_errors.append(e)
            logger.warning(
                f"Skipping undecodable row: {e.message}",
                extra={"table": table, "uuid": uuid, "column": e.column},
            )
            return None

    @property
    def stats(self) -> dict[str, int]:
        """Reconciler counters."""
        return {
            "batches_applied": self._batches_applied,
            "decode_errors": self._decode_error_count,
        }

