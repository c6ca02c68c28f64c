"""OrgMeter sync job endpoints.

Every request carries the funder id and its OrgMeter API key in the body;
they are checked against the funder directory before anything else.
"""

from typing import Any

from fastapi import APIRouter, status

from mca_jobs.core.exceptions import ValidationException
from mca_jobs.dependencies import SyncControllerDep, SyncProgressDep
from mca_jobs.jobs.controller import JobLifecycleController
from mca_jobs.jobs.models import JobFilter, JobParameters, JobRecord, JobStatus
from mca_jobs.schemas.jobs import (
    ApiResponse,
    CancelData,
    ContinueSyncRequest,
    JobListData,
    JobView,
    Pagination,
    ResumeData,
    ReviewRecordsRequest,
    SelectionData,
    SelectionRequest,
    StartSyncRequest,
    SyncCredentials,
    SyncJobsRequest,
    to_public,
)

router = APIRouter(prefix="/sync/orgmeter", tags=["sync"])


def _parse_statuses(raw: str | None) -> list[JobStatus] | None:
    if not raw:
        return None
    statuses = []
    for value in raw.split(","):
        value = value.strip()
        if not value:
            continue
        try:
            statuses.append(JobStatus(value))
        except ValueError:
            raise ValidationException(f"Invalid status '{value}'") from None
    return statuses or None


async def _owned_job(
    controller: JobLifecycleController, job_id: str, credentials: SyncCredentials
) -> JobRecord:
    await controller.authorize_tenant(credentials.funder_id, credentials.api_key)
    view = await controller.get_status(job_id)
    controller.ensure_owned_by(view.job, credentials.funder_id)
    return view.job


@router.post(
    "/progress",
    response_model=ApiResponse[dict[str, Any]],
    summary="Overall sync progress",
    description="Per entity type coverage, a step timeline and recent activity for a funder",
)
async def overall_sync_progress(
    body: SyncCredentials, controller: SyncControllerDep, progress: SyncProgressDep
) -> ApiResponse[dict[str, Any]]:
    await controller.authorize_tenant(body.funder_id, body.api_key)
    summary = await progress.overall_sync_progress(body.funder_id)
    return ApiResponse(data=to_public(summary))


@router.post(
    "/jobs",
    response_model=ApiResponse[JobListData],
    summary="List sync jobs",
)
async def list_sync_jobs(
    body: SyncJobsRequest, controller: SyncControllerDep
) -> ApiResponse[JobListData]:
    await controller.authorize_tenant(body.funder_id, body.api_key)
    if body.entity_type is not None:
        controller.validate_entity_type(body.entity_type)

    job_filter = JobFilter(
        funder=body.funder_id,
        entity_type=body.entity_type,
        statuses=_parse_statuses(body.status),
    )
    result = await controller.list_jobs(job_filter, page=body.page, limit=body.limit)
    return ApiResponse(
        data=JobListData(
            jobs=[JobView.from_record(job) for job in result.jobs],
            pagination=Pagination(
                page=result.page, limit=result.limit, total=result.total, pages=result.pages
            ),
            status_counts=result.status_counts,
            filters=job_filter.model_dump(mode="json", exclude_none=True, exclude={"kind"}),
        )
    )


@router.post(
    "/jobs/{job_id}/status",
    response_model=ApiResponse[dict[str, Any]],
    summary="Get sync job status",
    description="The job plus related jobs, mirror stats and whether it runs in this process",
)
async def sync_job_status(
    job_id: str,
    body: SyncCredentials,
    controller: SyncControllerDep,
    progress: SyncProgressDep,
) -> ApiResponse[dict[str, Any]]:
    job = await _owned_job(controller, job_id, body)
    details = await progress.sync_job_details(job)
    return ApiResponse(data=to_public(details))


@router.post(
    "/jobs/{job_id}/cancel",
    response_model=ApiResponse[CancelData],
    summary="Cancel sync job",
)
async def cancel_sync_job(
    job_id: str, body: SyncCredentials, controller: SyncControllerDep
) -> ApiResponse[CancelData]:
    await _owned_job(controller, job_id, body)
    result = await controller.cancel_job(job_id)
    return ApiResponse(
        message="Sync job cancelled",
        data=CancelData(
            job=JobView.from_record(result.job), signalled_live_run=result.signalled_live_run
        ),
    )


@router.post(
    "/jobs/{job_id}/continue",
    response_model=ApiResponse[ResumeData],
    status_code=status.HTTP_202_ACCEPTED,
    summary="Continue sync job",
    description="Restart a paused or failed sync job from the given offset",
)
async def continue_sync_job(
    job_id: str, body: ContinueSyncRequest, controller: SyncControllerDep
) -> ApiResponse[ResumeData]:
    await _owned_job(controller, job_id, body)
    result = await controller.resume_job(
        job_id,
        resume_from_index=body.resume_from_index,
        updated_parameters=body.update_parameters,
    )
    return ApiResponse(
        message=(
            f"Sync job for {result.job.entity_type} continued from index "
            f"{result.resume_from_index}"
        ),
        data=ResumeData(
            job=JobView.from_record(result.job), resume_from_index=result.resume_from_index
        ),
    )


@router.post(
    "/review/{entity_type}",
    response_model=ApiResponse[dict[str, Any]],
    summary="Review mirrored records",
    description="Mirrored records of one entity type filtered by sync state and search",
)
async def review_mirrored_records(
    entity_type: str,
    body: ReviewRecordsRequest,
    controller: SyncControllerDep,
    progress: SyncProgressDep,
) -> ApiResponse[dict[str, Any]]:
    await controller.authorize_tenant(body.funder_id, body.api_key)
    controller.validate_entity_type(entity_type)
    review = await progress.review_records(
        body.funder_id,
        entity_type,
        sync_status=body.sync_status,
        search=body.search,
        page=body.page,
        limit=body.limit,
    )
    return ApiResponse(data=to_public(review))


@router.put(
    "/selection/{entity_type}",
    response_model=ApiResponse[SelectionData],
    summary="Update sync selection",
    description="Choose which mirrored records the next sync job picks up",
)
async def update_sync_selection(
    entity_type: str,
    body: SelectionRequest,
    controller: SyncControllerDep,
    progress: SyncProgressDep,
) -> ApiResponse[SelectionData]:
    await controller.authorize_tenant(body.funder_id, body.api_key)
    controller.validate_entity_type(entity_type)
    updated = await progress.update_selection(
        body.funder_id, entity_type, body.external_ids, body.selected
    )
    return ApiResponse(
        message=f"Updated selection for {updated} record(s)",
        data=SelectionData(entity_type=entity_type, updated=updated, selected=body.selected),
    )


@router.post(
    "/{entity_type}/start",
    response_model=ApiResponse[JobView],
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start sync job",
    description="Create a sync job pushing mirrored records of one entity type into the CRM",
)
async def start_sync_job(
    entity_type: str, body: StartSyncRequest, controller: SyncControllerDep
) -> ApiResponse[JobView]:
    funder = await controller.authorize_tenant(body.funder_id, body.api_key)
    job = await controller.create_job(
        entity_type,
        JobParameters(
            api_key=body.api_key,
            funder=body.funder_id,
            batch_size=body.batch_size,
            update_existing=body.update_existing,
            only_selected=body.only_selected,
            dry_run=body.dry_run,
        ),
        created_by=f"api_key_sync_{funder.name}",
    )
    return ApiResponse(
        message=f"Sync job for {entity_type} started",
        data=JobView.from_record(job),
    )
