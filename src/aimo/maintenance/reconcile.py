"""Vector reconciliation job: repair drift between the two stores.

Memo writes commit the relational row before the embedding row, so a failed
vector write leaves a memo without an embedding. This job finds such memos and
re-embeds them, and removes embedding rows whose memo no longer exists.
"""

import logging
from dataclasses import asdict, dataclass

from aimo.models import MemoRecord, MemoVectorRecord
from aimo.repositories.memo import MemoRepository
from aimo.storage import StorageContext

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    scanned: int = 0
    missing: int = 0
    repaired: int = 0
    failed: int = 0
    orphans_found: int = 0
    orphans_removed: int = 0
    dry_run: bool = False

    def as_dict(self) -> dict[str, int | bool]:
        return asdict(self)


class VectorReconciler:
    """Scans both stores in keyset batches and repairs missing or orphaned vectors.

    Per-memo failures are logged and counted; the job itself only raises when
    a batch scan fails.
    """

    def __init__(self, storage: StorageContext, memos: MemoRepository | None = None):
        self.storage = storage
        self.memos = memos or MemoRepository(storage)

    async def run(self, batch_size: int | None = None, dry_run: bool = False) -> ReconcileReport:
        """Run the reconciliation job.

        Args:
            batch_size: Rows scanned per batch (defaults to config)
            dry_run: Count problems without writing anything
        """
        batch_size = batch_size or self.storage.config.reconcile_batch_size
        report = ReconcileReport(dry_run=dry_run)

        await self._repair_missing(report, batch_size)
        await self._remove_orphans(report, batch_size)

        logger.info(f"Reconciliation completed: {report.as_dict()}")
        return report

    async def _repair_missing(self, report: ReconcileReport, batch_size: int) -> None:
        vectors = self.storage.require_vectors()
        after: str | None = None

        while True:
            batch = await self.memos.scan_records(after=after, limit=batch_size)
            if not batch:
                break
            after = batch[-1].memo_id
            report.scanned += len(batch)

            present = await vectors.existing_memo_ids([r.memo_id for r in batch])
            missing = [r for r in batch if r.memo_id not in present]
            report.missing += len(missing)
            if report.dry_run:
                for record in missing:
                    logger.info(f"[dry-run] memo {record.memo_id} has no embedding")
            elif missing:
                await self._repair_batch(report, missing)

            if len(batch) < batch_size:
                break

    async def _repair_batch(self, report: ReconcileReport, missing: list[MemoRecord]) -> None:
        vectors = self.storage.require_vectors()
        try:
            embeddings = await self.memos.embed_texts([r.content for r in missing])
        except Exception as e:
            logger.warning(f"Failed to embed {len(missing)} memos for repair: {e}")
            report.failed += len(missing)
            return

        for record, embedding in zip(missing, embeddings):
            try:
                await vectors.upsert(MemoVectorRecord(memo_id=record.memo_id, embedding=embedding))
                report.repaired += 1
            except Exception as e:
                logger.warning(f"Failed to repair embedding for memo {record.memo_id}: {e}")
                report.failed += 1

    async def _remove_orphans(self, report: ReconcileReport, batch_size: int) -> None:
        vectors = self.storage.require_vectors()
        after: str | None = None

        while True:
            ids = await vectors.list_memo_ids(after=after, limit=batch_size)
            if not ids:
                break
            after = ids[-1]

            known = await self.memos.existing_memo_ids(ids)
            for memo_id in ids:
                if memo_id in known:
                    continue
                report.orphans_found += 1
                if report.dry_run:
                    logger.info(f"[dry-run] embedding {memo_id} has no memo")
                    continue
                try:
                    await vectors.delete_by_memo_id(memo_id)
                    report.orphans_removed += 1
                except Exception as e:
                    logger.warning(f"Failed to remove orphan embedding {memo_id}: {e}")
                    report.failed += 1

            if len(ids) < batch_size:
                break
