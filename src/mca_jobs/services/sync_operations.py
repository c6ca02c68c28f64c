"""Sync operations: local mirror into the CRM."""

from datetime import UTC, datetime
from typing import Any

from mca_jobs.core.constants import CRM_COLLECTIONS, CRM_SOURCE, SYNC_ORDER
from mca_jobs.core.logging import get_logger
from mca_jobs.jobs.models import EntityMirrorRecord, JobKind, JobParameters
from mca_jobs.jobs.operations import OperationContext, OperationResult, OperationStats
from mca_jobs.repositories.base import CrmRepository, EntityMirrorRepository
from mca_jobs.services.descriptors import describe_entity

logger = get_logger(__name__)


def to_crm_document(record: EntityMirrorRecord) -> dict[str, Any]:
    """Shape a mirrored record for its CRM collection."""
    return {
        "source": CRM_SOURCE,
        "external_id": record.external_id,
        "entity_type": record.entity_type,
        "name": describe_entity(record.data, fallback=record.external_id),
        "data": record.data,
        "synced_at": datetime.now(UTC).isoformat(),
    }


class MirrorSyncOperation:
    """Push mirrored records of one entity type into the CRM.

    Units are mirror records ordered by external id, restricted to records
    selected for sync when ``only_selected`` is set. Syncing a record does
    not change its selection, so the enumeration is the same on resume.
    """

    kind = JobKind.SYNC
    order_key = "external_id"

    def __init__(
        self,
        entity_type: str,
        mirror: EntityMirrorRepository,
        crm: CrmRepository,
    ):
        self.entity_type = entity_type
        self.collection = CRM_COLLECTIONS[entity_type]
        self.mirror = mirror
        self.crm = crm

    async def count(self, parameters: JobParameters) -> int:
        return await self.mirror.count(
            parameters.funder, self.entity_type, only_selected=parameters.only_selected
        )

    async def run(self, context: OperationContext) -> OperationResult:
        params = context.parameters
        stats = OperationStats()
        processed = 0

        while True:
            page = await self.mirror.list_page(
                params.funder,
                self.entity_type,
                offset=context.resume_from_index + processed,
                limit=params.batch_size,
                only_selected=params.only_selected,
            )
            if not page:
                break

            for record in page:
                await self._sync_one(record, context, stats)
            processed += len(page)
            await context.progress_callback(
                processed,
                context.resume_from_index + processed,
                describe_entity(page[-1].data, fallback=page[-1].external_id),
            )
            if len(page) < params.batch_size:
                break

        logger.info(
            f"Synced {processed} {self.entity_type} record(s) into '{self.collection}' "
            f"for funder {params.funder}"
        )
        return OperationResult(
            stats=stats,
            details={
                "entity_type": self.entity_type,
                "collection": self.collection,
                "resumed_from": context.resume_from_index,
                "dry_run": params.dry_run,
            },
        )

    async def _sync_one(
        self, record: EntityMirrorRecord, context: OperationContext, stats: OperationStats
    ) -> None:
        params = context.parameters
        try:
            existing = await self.crm.find_by_external_id(
                params.funder, self.collection, record.external_id
            )
            if existing is not None and not params.update_existing:
                stats.total_skipped += 1
                if not params.dry_run and not record.sync_id:
                    await self.mirror.mark_synced(
                        params.funder,
                        self.entity_type,
                        record.external_id,
                        existing["id"],
                        context.job_id,
                    )
                return
            if params.dry_run:
                if existing is None:
                    stats.total_saved += 1
                else:
                    stats.total_updated += 1
                return

            crm_id, created = await self.crm.upsert(
                params.funder, self.collection, record.external_id, to_crm_document(record)
            )
            await self.mirror.mark_synced(
                params.funder, self.entity_type, record.external_id, crm_id, context.job_id
            )
            if created:
                stats.total_saved += 1
            else:
                stats.total_updated += 1
        except Exception as e:
            logger.error(f"Failed to sync {self.entity_type} {record.external_id}: {e}")
            stats.record_error(record.external_id, str(e))


def build_sync_operations(
    mirror: EntityMirrorRepository, crm: CrmRepository
) -> list[MirrorSyncOperation]:
    return [MirrorSyncOperation(entity, mirror, crm) for entity in SYNC_ORDER]
