"""Per-artwork delete-then-insert reconciliation of bucket media with the database."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping

from .config import SyncConfig
from .grouping import BaseGroup, GroupingIndex, ListingStats, index_listing
from .pairing import MediaRecord, PairingResolver, SkippedInput
from .persistence import MediaStore, PersistenceError

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ArtworkResult:
    artwork_id: int
    deleted: int = 0
    inserted: int = 0
    skipped: list[SkippedInput] = field(default_factory=list)


@dataclass(slots=True)
class RunAccounting:
    deleted: int = 0
    inserted: int = 0
    keys_scanned: int = 0
    keys_rejected: int = 0
    artworks: list[ArtworkResult] = field(default_factory=list)
    skipped: list[SkippedInput] = field(default_factory=list)

    def record(self, result: ArtworkResult) -> None:
        """Fold in a committed artwork."""

        self.deleted += result.deleted
        self.inserted += result.inserted
        self.artworks.append(result)
        self.skipped.extend(result.skipped)


@dataclass(slots=True)
class SyncPlan:
    records: dict[int, list[MediaRecord]]
    skipped: list[SkippedInput]
    stats: ListingStats

    @property
    def total_records(self) -> int:
        return sum(len(records) for records in self.records.values())


class ReconciliationDriver:
    """Replace each artwork's media rows with the records derived from a bucket listing."""

    def __init__(
        self,
        config: SyncConfig,
        store: MediaStore | None = None,
        *,
        store_factory: Callable[[], MediaStore] | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._store_factory = store_factory
        self._resolver = PairingResolver(config.public_base_url)

    def plan(self, listing: Iterable[str]) -> SyncPlan:
        """Resolve the listing into records without touching persistence."""

        index, stats = index_listing(listing, self._config.extensions)
        skipped: list[SkippedInput] = []
        records = {
            artwork_id: self._resolve_artwork(artwork_id, index[artwork_id], skipped)
            for artwork_id in sorted(index)
        }
        return SyncPlan(records=records, skipped=skipped, stats=stats)

    def run(self, listing: Iterable[str]) -> RunAccounting:
        if self._store is None and self._store_factory is None:
            raise ValueError("A store or store_factory is required to run a sync")
        # The whole inventory must be known first: an artwork's objects need not
        # be contiguous in the listing.
        index, stats = index_listing(listing, self._config.extensions)
        accounting = RunAccounting(keys_scanned=stats.scanned, keys_rejected=stats.rejected)
        LOGGER.info(
            "Indexed %d artwork(s) from %d key(s); %d key(s) skipped",
            len(index),
            stats.scanned,
            stats.rejected,
        )

        try:
            if self._config.max_workers > 1 and self._store_factory is not None:
                self._run_pooled(index, accounting)
            else:
                store = self._store if self._store is not None else self._store_factory()
                for artwork_id in sorted(index):
                    result = self.sync_artwork(store, artwork_id, index[artwork_id])
                    accounting.record(result)
                    _log_artwork(result)
        except PersistenceError as exc:
            exc.accounting = accounting
            LOGGER.error(
                "Aborted at artwork_id=%s. Deleted rows (committed): %d, Inserted rows: %d",
                exc.artwork_id,
                accounting.deleted,
                accounting.inserted,
            )
            raise

        LOGGER.info(
            "Done. Deleted rows (total, across artworks): %d, Inserted rows: %d",
            accounting.deleted,
            accounting.inserted,
        )
        return accounting

    def sync_artwork(self, store: MediaStore, artwork_id: int, groups: Mapping[str, BaseGroup]) -> ArtworkResult:
        """Replace one artwork's rows inside a single transaction."""

        store.begin_transaction()
        try:
            return self._replace_artwork(store, artwork_id, groups)
        except BaseException:
            store.rollback()
            raise

    def _replace_artwork(self, store: MediaStore, artwork_id: int, groups: Mapping[str, BaseGroup]) -> ArtworkResult:
        result = ArtworkResult(artwork_id=artwork_id)

        deleted = store.delete_artwork_media(artwork_id)
        if not deleted.ok:
            raise PersistenceError(
                f"Failed to delete media for artwork_id={artwork_id}: {deleted.error}",
                artwork_id=artwork_id,
            ) from deleted.error
        result.deleted = deleted.rowcount

        for record in self._resolve_artwork(artwork_id, groups, result.skipped):
            inserted = store.insert_media(record)
            if not inserted.ok:
                raise PersistenceError(
                    f"Failed to insert {record.kind.value} media for artwork_id={artwork_id}: {inserted.error}",
                    artwork_id=artwork_id,
                ) from inserted.error
            result.inserted += 1

        committed = store.commit()
        if not committed.ok:
            raise PersistenceError(
                f"Failed to commit media for artwork_id={artwork_id}: {committed.error}",
                artwork_id=artwork_id,
            ) from committed.error
        return result

    def _resolve_artwork(
        self,
        artwork_id: int,
        groups: Mapping[str, BaseGroup],
        skipped: list[SkippedInput],
    ) -> list[MediaRecord]:
        records: list[MediaRecord] = []
        for base_name in sorted(groups):
            record = self._resolver.resolve(artwork_id, base_name, groups[base_name], skipped)
            if record is not None:
                records.append(record)
        return records

    def _run_pooled(self, index: GroupingIndex, accounting: RunAccounting) -> None:
        committed: dict[int, ArtworkResult] = {}
        failure: BaseException | None = None

        def _sync_isolated(artwork_id: int) -> ArtworkResult:
            # Every worker gets its own connection and transaction.
            return self.sync_artwork(self._store_factory(), artwork_id, index[artwork_id])

        with ThreadPoolExecutor(max_workers=self._config.max_workers) as executor:
            future_to_artwork: dict[Future[ArtworkResult], int] = {
                executor.submit(_sync_isolated, artwork_id): artwork_id for artwork_id in sorted(index)
            }
            for finished in as_completed(future_to_artwork):
                if finished.cancelled():
                    continue
                try:
                    result = finished.result()
                except Exception as exc:
                    if failure is None:
                        failure = exc
                        for pending in future_to_artwork:
                            pending.cancel()
                    continue
                committed[result.artwork_id] = result

        for artwork_id in sorted(committed):
            accounting.record(committed[artwork_id])
            _log_artwork(committed[artwork_id])

        if failure is not None:
            raise failure


def _log_artwork(result: ArtworkResult) -> None:
    LOGGER.info(
        "Synced artwork_id=%d: deleted %d, inserted %d",
        result.artwork_id,
        result.deleted,
        result.inserted,
    )
