# tradewatch/api/routes.py
from fastapi import APIRouter, Depends, HTTPException, Request
from typing import List
from .. import schemas
from ..errors import DuplicateJobId, InvalidSchedule, JobNotFound, StoreError
from ..scheduler import RecurringJobRegistry
from ..services import QueryExecutionOrchestrator
from ..utils import logger

router = APIRouter()


def get_registry(request: Request) -> RecurringJobRegistry:
    return request.app.state.registry


def get_orchestrator(request: Request) -> QueryExecutionOrchestrator:
    return request.app.state.orchestrator


def _job_error(e):
    if isinstance(e, JobNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, DuplicateJobId):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, InvalidSchedule):
        return HTTPException(status_code=422, detail=str(e))
    logger.error("Job store failure: %s", e)
    return HTTPException(status_code=503, detail="Job store unavailable")


@router.get("/health")
def health():
    return {"status": "ok"}


@router.post("/add-job")
def add_job(payload: schemas.AddJobRequest, registry: RecurringJobRegistry = Depends(get_registry)):
    try:
        registry.add_job(payload.id, payload.schedule, payload.filter)
    except (DuplicateJobId, InvalidSchedule, StoreError) as e:
        raise _job_error(e)
    return {"message": f"Job {payload.id} added and started."}


@router.post("/remove-job")
def remove_job(payload: schemas.RemoveJobRequest, registry: RecurringJobRegistry = Depends(get_registry)):
    try:
        registry.remove_job(payload.id)
    except (JobNotFound, StoreError) as e:
        raise _job_error(e)
    return {"message": f"Job {payload.id} removed."}


@router.post("/update-job")
def update_job(payload: schemas.UpdateJobRequest, registry: RecurringJobRegistry = Depends(get_registry)):
    try:
        registry.update_job(payload.id, payload.new_schedule, payload.filter)
    except (JobNotFound, InvalidSchedule, StoreError) as e:
        raise _job_error(e)
    return {"message": f"Job {payload.id} updated."}


@router.get("/list-jobs", response_model=List[schemas.JobOut])
def list_jobs(registry: RecurringJobRegistry = Depends(get_registry)):
    return [schemas.JobOut(id=j.id, next_fire_time=j.next_fire_time) for j in registry.list_jobs()]


@router.post("/run-now", response_model=schemas.RunOutcomeOut)
def run_now(payload: schemas.RunNowRequest, orchestrator: QueryExecutionOrchestrator = Depends(get_orchestrator)):
    outcome = orchestrator.run(None, payload.filter, (), recipient=payload.recipient)
    if outcome.error and not outcome.delivered_ids:
        raise HTTPException(status_code=502, detail=outcome.error)
    return schemas.RunOutcomeOut(
        job_id=outcome.job_id,
        fetched=outcome.fetched,
        fresh=outcome.fresh,
        delivered=outcome.delivered_ids,
        capture_failures=outcome.capture_failures,
        failed_batches=outcome.failed_batches,
        error=outcome.error,
    )
