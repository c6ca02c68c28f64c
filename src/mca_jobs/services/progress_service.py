"""Sync progress summaries across entity types."""

from datetime import UTC, datetime
from typing import Any

from mca_jobs.core.constants import SYNC_ORDER
from mca_jobs.core.logging import get_logger
from mca_jobs.jobs.models import (
    JobFilter,
    JobKind,
    JobRecord,
    JobStatus,
    MirrorStats,
    ReviewStatus,
)
from mca_jobs.jobs.registry import RunRegistry
from mca_jobs.repositories.base import EntityMirrorRepository, JobRepository
from mca_jobs.services.descriptors import describe_entity

logger = get_logger(__name__)


def rate(part: int, whole: int) -> float:
    """Percentage rounded to one decimal, 0 when there is nothing to measure."""
    if whole <= 0:
        return 0.0
    return round(part / whole * 100, 1)


def timeline_status(stats: MirrorStats, is_running: bool) -> str:
    if is_running:
        return "running"
    if stats.total > 0 and stats.synced > 0:
        return "completed"
    if stats.total > 0 and stats.pending > 0:
        return "pending"
    return "waiting"


class SyncProgressService:
    """Builds the per-funder sync dashboard from mirror stats and job history."""

    def __init__(
        self,
        repository: JobRepository,
        mirror: EntityMirrorRepository,
        registry: RunRegistry,
    ):
        self.repository = repository
        self.mirror = mirror
        self.registry = registry

    async def overall_sync_progress(self, funder: str) -> dict[str, Any]:
        """Summarise sync coverage and job state for every sync entity type."""
        running = await self.repository.find(
            JobFilter(
                kind=JobKind.SYNC,
                funder=funder,
                statuses=[JobStatus.PENDING, JobStatus.RUNNING],
            )
        )
        running_by_entity: dict[str, JobRecord] = {}
        for job in running:
            running_by_entity.setdefault(job.entity_type, job)

        entity_progress: dict[str, dict[str, Any]] = {}
        stats_by_entity: dict[str, MirrorStats] = {}
        totals = MirrorStats()
        for entity_type in SYNC_ORDER:
            stats = stats_by_entity[entity_type] = await self.mirror.stats(funder, entity_type)
            last = await self.repository.find(
                JobFilter(
                    kind=JobKind.SYNC,
                    funder=funder,
                    entity_type=entity_type,
                    statuses=[JobStatus.COMPLETED, JobStatus.FAILED],
                ),
                limit=1,
            )
            running_job = running_by_entity.get(entity_type)
            entity_progress[entity_type] = {
                "name": entity_type,
                "total": stats.total,
                "synced": stats.synced,
                "selected": stats.selected,
                "pending": stats.pending,
                "ignored": stats.ignored,
                "completion_rate": rate(stats.synced, stats.total),
                "selection_rate": rate(stats.selected, stats.total),
                "has_data": stats.total > 0,
                "is_running": running_job is not None,
                "running_job": running_job,
                "last_sync_job": last[0] if last else None,
            }
            totals.total += stats.total
            totals.synced += stats.synced
            totals.selected += stats.selected
            totals.ignored += stats.ignored

        timeline = [
            {
                "step": index + 1,
                "entity_type": entity_type,
                "name": entity_type.replace("-", " ").title(),
                "status": timeline_status(
                    stats_by_entity[entity_type], entity_type in running_by_entity
                ),
                "progress": entity_progress[entity_type]["completion_rate"],
                "running_job": entity_progress[entity_type]["running_job"],
            }
            for index, entity_type in enumerate(SYNC_ORDER)
        ]

        recent = await self.repository.find(JobFilter(kind=JobKind.SYNC, funder=funder), limit=10)

        return {
            "funder_id": funder,
            "overall_stats": {
                "total_entities": totals.total,
                "total_synced": totals.synced,
                "total_selected": totals.selected,
                "total_pending": totals.pending,
                "total_ignored": totals.ignored,
                "overall_completion_rate": rate(totals.synced, totals.total),
                "overall_selection_rate": rate(totals.selected, totals.total),
                "has_any_data": totals.total > 0,
                "has_running_jobs": bool(running_by_entity),
                "total_entity_types": len(SYNC_ORDER),
            },
            "entity_progress": entity_progress,
            "sync_timeline": timeline,
            "running_jobs": running_by_entity or None,
            "recent_activity": recent,
            "sync_order": list(SYNC_ORDER),
            "generated_at": datetime.now(UTC),
        }

    async def sync_job_details(self, job: JobRecord) -> dict[str, Any]:
        """Related jobs, mirror stats and liveness for one sync job."""
        related = await self.repository.find(
            JobFilter(
                kind=JobKind.SYNC,
                funder=job.funder,
                entity_type=job.entity_type,
                exclude_job_id=job.job_id,
            ),
            limit=5,
        )
        stats = await self.mirror.stats(job.funder, job.entity_type)
        return {
            "job": job,
            "related_jobs": related,
            "entity_stats": stats,
            "is_running": self.registry.is_live(job.job_id),
            "live_since": self.registry.live_since(job.job_id),
        }

    async def review_records(
        self,
        funder: str,
        entity_type: str,
        sync_status: ReviewStatus = ReviewStatus.ALL,
        search: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> dict[str, Any]:
        """Mirrored records with their sync state, for choosing the sync selection.

        Records are newest import first. The last five finished sync jobs of
        the entity type are attached as history.
        """
        records, total = await self.mirror.list_for_review(
            funder,
            entity_type,
            sync_status=sync_status,
            search=search,
            offset=(page - 1) * limit,
            limit=limit,
        )
        history = await self.repository.find(
            JobFilter(
                kind=JobKind.SYNC,
                funder=funder,
                entity_type=entity_type,
                statuses=[JobStatus.COMPLETED, JobStatus.FAILED],
            ),
            limit=5,
        )
        return {
            "funder_id": funder,
            "entity_type": entity_type,
            "filters": {"sync_status": sync_status.value, "search": search},
            "records": [
                {
                    "external_id": record.external_id,
                    "label": describe_entity(record.data, fallback=record.external_id),
                    "sync_status": record.sync_status,
                    "needs_sync": record.needs_sync,
                    "deleted": record.deleted,
                    "sync_id": record.sync_id,
                    "imported_at": record.imported_at,
                    "last_synced_at": record.last_synced_at,
                    "data": record.data,
                }
                for record in records
            ],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
            "entity_stats": await self.mirror.stats(funder, entity_type),
            "sync_history": history,
        }

    async def update_selection(
        self, funder: str, entity_type: str, external_ids: list[str], selected: bool
    ) -> int:
        """Mark mirrored records as selected (or not) for the next sync."""
        changed = await self.mirror.set_selection(funder, entity_type, external_ids, selected)
        logger.info(
            f"Updated sync selection for {changed} {entity_type} record(s) of funder {funder} "
            f"(selected={selected})"
        )
        return changed
