"""OrgMeter import job endpoints."""

from fastapi import APIRouter, Query, status

from mca_jobs.dependencies import ImportControllerDep
from mca_jobs.jobs.models import JobFilter, JobParameters, JobRecord, JobStatus
from mca_jobs.schemas.jobs import (
    ActiveJobsData,
    ActiveJobView,
    ApiResponse,
    CancelData,
    CreateImportJobRequest,
    EntityJobStatusData,
    JobListData,
    JobView,
    Pagination,
    ResumeAllData,
    ResumeAllRequest,
    ResumeData,
    ResumeJobRequest,
    ValidateApiData,
    ValidateApiRequest,
)

router = APIRouter(prefix="/import/orgmeter", tags=["import"])


def _optional_view(job: JobRecord | None) -> JobView | None:
    return JobView.from_record(job) if job is not None else None


@router.post(
    "/validate-api",
    response_model=ApiResponse[ValidateApiData],
    summary="Validate API key",
    description="Check OrgMeter with the key and return the import order",
)
async def validate_api(
    body: ValidateApiRequest, controller: ImportControllerDep
) -> ApiResponse[ValidateApiData]:
    result = await controller.validate_credential(body.api_key)
    return ApiResponse(message="API connection successful", data=ValidateApiData(**result))


@router.post(
    "/jobs",
    response_model=ApiResponse[JobView],
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start import job",
    description="Create an import job for one entity type; it runs in the background",
)
async def create_import_job(
    body: CreateImportJobRequest, controller: ImportControllerDep
) -> ApiResponse[JobView]:
    job = await controller.create_job(
        body.entity_type,
        JobParameters(
            api_key=body.api_key,
            funder=body.funder,
            batch_size=body.batch_size,
            update_existing=body.update_existing,
            dry_run=body.dry_run,
        ),
        created_by=body.created_by,
    )
    return ApiResponse(
        message=f"Import job for {job.entity_type} started",
        data=JobView.from_record(job),
    )


@router.get(
    "/jobs",
    response_model=ApiResponse[JobListData],
    summary="List import jobs",
)
async def list_import_jobs(
    controller: ImportControllerDep,
    funder: str | None = None,
    entity_type: str | None = None,
    job_status: list[JobStatus] | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> ApiResponse[JobListData]:
    job_filter = JobFilter(funder=funder, entity_type=entity_type, statuses=job_status)
    result = await controller.list_jobs(job_filter, page=page, limit=limit)
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


@router.get(
    "/jobs/active",
    response_model=ApiResponse[ActiveJobsData],
    summary="List active import jobs",
    description="Pending, running and paused jobs with what can be done to each",
)
async def active_import_jobs(
    controller: ImportControllerDep, funder: str | None = None
) -> ApiResponse[ActiveJobsData]:
    result = await controller.active_jobs(funder=funder)
    return ApiResponse(
        data=ActiveJobsData(
            jobs=[
                ActiveJobView.model_validate(
                    {
                        **JobView.from_record(view.job, is_live=view.is_live).model_dump(),
                        "can_cancel": view.can_cancel,
                        "can_pause": view.can_pause,
                        "can_resume": view.can_resume,
                    }
                )
                for view in result.jobs
            ],
            live_runs=result.live_runs,
            capacity=result.capacity,
        )
    )


@router.post(
    "/jobs/resume-all",
    response_model=ApiResponse[ResumeAllData],
    status_code=status.HTTP_202_ACCEPTED,
    summary="Resume all paused import jobs of a funder",
)
async def resume_all_import_jobs(
    body: ResumeAllRequest, controller: ImportControllerDep
) -> ApiResponse[ResumeAllData]:
    result = await controller.resume_all(body.funder, body.entity_types, body.parameters)
    return ApiResponse(
        message=f"Resumed {len(result.resumed)} job(s)",
        data=ResumeAllData(
            resumed=[
                ResumeData(job=JobView.from_record(r.job), resume_from_index=r.resume_from_index)
                for r in result.resumed
            ],
            failures=result.failures,
        ),
    )


@router.get(
    "/jobs/{job_id}",
    response_model=ApiResponse[JobView],
    summary="Get import job status",
)
async def get_import_job(job_id: str, controller: ImportControllerDep) -> ApiResponse[JobView]:
    view = await controller.get_status(job_id)
    return ApiResponse(data=JobView.from_record(view.job, is_live=view.is_live))


@router.post(
    "/jobs/{job_id}/cancel",
    response_model=ApiResponse[CancelData],
    summary="Cancel import job",
)
async def cancel_import_job(
    job_id: str, controller: ImportControllerDep
) -> ApiResponse[CancelData]:
    result = await controller.cancel_job(job_id)
    return ApiResponse(
        message="Import job cancelled",
        data=CancelData(
            job=JobView.from_record(result.job), signalled_live_run=result.signalled_live_run
        ),
    )


@router.post(
    "/jobs/{job_id}/pause",
    response_model=ApiResponse[JobView],
    summary="Pause import job",
)
async def pause_import_job(job_id: str, controller: ImportControllerDep) -> ApiResponse[JobView]:
    job = await controller.pause_job(job_id)
    return ApiResponse(message="Import job paused", data=JobView.from_record(job))


@router.post(
    "/jobs/{job_id}/resume",
    response_model=ApiResponse[ResumeData],
    status_code=status.HTTP_202_ACCEPTED,
    summary="Resume import job",
    description="Resume a paused or failed job from its checkpoint or an explicit offset",
)
async def resume_import_job(
    job_id: str, controller: ImportControllerDep, body: ResumeJobRequest | None = None
) -> ApiResponse[ResumeData]:
    body = body or ResumeJobRequest()
    result = await controller.resume_job(
        job_id,
        resume_from_index=body.resume_from_index,
        resume_from=body.resume_from,
        updated_parameters=body.parameters,
    )
    return ApiResponse(
        message=f"Import job resumed from index {result.resume_from_index}",
        data=ResumeData(
            job=JobView.from_record(result.job), resume_from_index=result.resume_from_index
        ),
    )


@router.get(
    "/entities/{entity_type}/status",
    response_model=ApiResponse[EntityJobStatusData],
    summary="Import status of one entity type",
)
async def entity_import_status(
    entity_type: str, controller: ImportControllerDep, funder: str = Query(..., min_length=1)
) -> ApiResponse[EntityJobStatusData]:
    result = await controller.entity_job_status(entity_type, funder)
    return ApiResponse(
        data=EntityJobStatusData(
            entity_type=result.entity_type,
            funder=result.funder,
            can_create_new_job=result.can_create_new_job,
            active_job=_optional_view(result.active_job),
            paused_job=_optional_view(result.paused_job),
            last_completed_job=_optional_view(result.last_completed_job),
            last_failed_job=_optional_view(result.last_failed_job),
            status_counts=result.status_counts,
            recent_jobs=[JobView.from_record(job) for job in result.recent_jobs],
            mirrored_records=result.mirrored_records,
        )
    )
