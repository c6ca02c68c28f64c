"""Import operations: OrgMeter API into the local mirror."""

from collections import Counter
from datetime import UTC, datetime
from typing import Any

from mca_jobs.clients.orgmeter import ExternalSource, ExternalSourceFactory
from mca_jobs.core.constants import IMPORT_ORDER, NESTED_USER_LISTS
from mca_jobs.core.logging import get_logger
from mca_jobs.jobs.models import EntityMirrorRecord, JobKind, JobParameters
from mca_jobs.jobs.operations import (
    OperationContext,
    OperationResult,
    OperationStats,
)
from mca_jobs.repositories.base import EntityMirrorRepository
from mca_jobs.services.descriptors import describe_entity, sort_key

logger = get_logger(__name__)


class OrgMeterImportOperation:
    """Import one OrgMeter entity type for a funder.

    Units are the records returned by paging the entity endpoint, ordered by
    numeric id. Each unit is fetched in detail and upserted into the mirror.
    Deleted records are skipped. Lenders and ISOs additionally mirror their
    embedded underwriter and sales rep users.
    """

    kind = JobKind.IMPORT
    order_key = "id"

    def __init__(
        self,
        entity_type: str,
        source_factory: ExternalSourceFactory,
        mirror: EntityMirrorRepository,
    ):
        self.entity_type = entity_type
        self.source_factory = source_factory
        self.mirror = mirror

    async def count(self, parameters: JobParameters) -> int:
        client = self.source_factory(parameters.api_key)
        try:
            return await client.get_total_count(self.entity_type)
        finally:
            await client.aclose()

    async def run(self, context: OperationContext) -> OperationResult:
        params = context.parameters
        stats = OperationStats()
        nested: Counter[str] = Counter()

        client = self.source_factory(params.api_key)
        try:
            summaries = await client.fetch_all_entities(self.entity_type)
            summaries.sort(key=sort_key)
            units = summaries[context.resume_from_index :]
            logger.info(
                f"Importing {len(units)} of {len(summaries)} {self.entity_type} record(s) "
                f"for funder {params.funder} (dry_run={params.dry_run})"
            )

            processed = 0
            for start in range(0, len(units), params.batch_size):
                label = None
                for summary in units[start : start + params.batch_size]:
                    label = describe_entity(summary)
                    await self._import_one(client, summary, context, stats, nested)
                    processed += 1
                await context.progress_callback(processed, len(summaries), label)
        finally:
            await client.aclose()

        details: dict[str, Any] = {
            "entity_type": self.entity_type,
            "fetched": len(summaries),
            "resumed_from": context.resume_from_index,
            "dry_run": params.dry_run,
        }
        if nested:
            details["nested"] = dict(nested)
        return OperationResult(stats=stats, details=details)

    async def _import_one(
        self,
        client: ExternalSource,
        summary: dict[str, Any],
        context: OperationContext,
        stats: OperationStats,
        nested: Counter[str],
    ) -> None:
        params = context.parameters
        external_id = str(summary.get("id"))
        try:
            if summary.get("deleted"):
                stats.total_skipped += 1
                logger.debug(f"Skipped deleted {self.entity_type} {external_id}")
                return

            existing = await self.mirror.get(params.funder, self.entity_type, external_id)
            if existing is not None and not params.update_existing:
                stats.total_skipped += 1
                return
            if params.dry_run:
                if existing is None:
                    stats.total_saved += 1
                else:
                    stats.total_updated += 1
                return

            detail = await client.fetch_entity_by_id(self.entity_type, external_id)
            await self._save(params, self.entity_type, external_id, detail, existing)
            if existing is None:
                stats.total_saved += 1
            else:
                stats.total_updated += 1

            if self.entity_type in NESTED_USER_LISTS:
                field_name, nested_type = NESTED_USER_LISTS[self.entity_type]
                for user in detail.get(field_name) or []:
                    outcome = await self._save_nested(params, nested_type, user)
                    nested[f"{nested_type}_{outcome}"] += 1
        except Exception as e:
            logger.error(f"Failed to import {self.entity_type} {external_id}: {e}")
            stats.record_error(external_id, str(e))

    async def _save(
        self,
        params: JobParameters,
        entity_type: str,
        external_id: str,
        data: dict[str, Any],
        existing: EntityMirrorRecord | None,
    ) -> None:
        now = datetime.now(UTC)
        deleted = bool(data.get("deleted"))
        if existing is None:
            record = EntityMirrorRecord(
                funder=params.funder,
                entity_type=entity_type,
                external_id=external_id,
                data=data,
                deleted=deleted,
                needs_sync=not deleted,
                imported_at=now,
            )
        else:
            # Keep selection and sync bookkeeping from the previous import
            record = existing.model_copy(
                update={"data": data, "deleted": deleted, "updated_at": now}
            )
        await self.mirror.upsert(record)

    async def _save_nested(
        self, params: JobParameters, entity_type: str, user: dict[str, Any]
    ) -> str:
        external_id = str(user.get("id"))
        existing = await self.mirror.get(params.funder, entity_type, external_id)
        if existing is not None and not params.update_existing:
            return "skipped"
        await self._save(params, entity_type, external_id, user, existing)
        return "created" if existing is None else "updated"


def build_import_operations(
    source_factory: ExternalSourceFactory, mirror: EntityMirrorRepository
) -> list[OrgMeterImportOperation]:
    return [OrgMeterImportOperation(entity, source_factory, mirror) for entity in IMPORT_ORDER]
