# auction_pipeline/api/routes.py
from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from .. import config, crud, schemas
from ..errors import CollectionBusyError, PipelineError
from ..pipeline import Pipeline
from ..schemas import Site, Tier
from ..utils import get_logger, utcnow

logger = get_logger(__name__)

router = APIRouter()


def get_pipeline(request: Request) -> Pipeline:
    return request.app.state.pipeline


def get_db(request: Request):
    db = request.app.state.pipeline.session_factory()
    try:
        yield db
    finally:
        db.close()


def _http_error(e: PipelineError):
    return HTTPException(status_code=e.status_code, detail=str(e))


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/sales/search", response_model=schemas.SearchResponse)
def search_sales(
    make: str,
    site: Site,
    model: Optional[str] = None,
    year_from: Optional[int] = None,
    year_to: Optional[int] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = Query(1, ge=1),
    size: int = Query(config.PAGE_SIZE, ge=1, le=100),
    tier: Tier = Tier.FREE,
    pipeline: Pipeline = Depends(get_pipeline),
):
    key = schemas.CacheQueryKey(make=make, model=model, site=site, year_from=year_from, year_to=year_to,
                                date_from=date_from, date_to=date_to)
    try:
        return pipeline.search.search(key, page=page, page_size=size, tier=tier)
    except PipelineError as e:
        raise _http_error(e)


@router.get("/sales/stats")
def sales_stats(hours: int = Query(24, ge=1), db: Session = Depends(get_db)):
    return crud.record_totals(db, utcnow() - timedelta(hours=hours))


@router.post("/collection/targeted", response_model=schemas.TargetedCollectionResponse)
def collect_targeted(payload: schemas.TargetedCollectionRequest, force: bool = False,
                     pipeline: Pipeline = Depends(get_pipeline)):
    try:
        return pipeline.targeted.collect(payload, force=force)
    except PipelineError as e:
        raise _http_error(e)
    except Exception as e:
        logger.exception("Targeted collection failed: %s", e)
        raise HTTPException(status_code=500, detail="Targeted collection failed")


@router.post("/collection/targeted/check", response_model=schemas.TargetedCheckResponse)
def check_targeted(payload: schemas.TargetedCollectionRequest, pipeline: Pipeline = Depends(get_pipeline)):
    try:
        return pipeline.targeted.check(payload)
    except PipelineError as e:
        raise _http_error(e)


@router.get("/collection/status")
def collection_status(pipeline: Pipeline = Depends(get_pipeline)):
    return pipeline.scheduler.status()


@router.get("/collection/jobs")
def collection_jobs(pipeline: Pipeline = Depends(get_pipeline)):
    return pipeline.scheduler.queue()


@router.post("/collection/start")
def start_collection(pipeline: Pipeline = Depends(get_pipeline)):
    started = pipeline.scheduler.start()
    return {"status": "started" if started else "already running"}


@router.post("/collection/stop")
def stop_collection(pipeline: Pipeline = Depends(get_pipeline)):
    stopped = pipeline.scheduler.stop()
    return {"status": "stopped" if stopped else "not running"}


@router.post("/collection/run-next")
def run_next_job(pipeline: Pipeline = Depends(get_pipeline)):
    try:
        result = pipeline.scheduler.process_next_job()
    except CollectionBusyError:
        return {"status": "busy"}
    if result is None:
        return {"status": "idle"}
    return {
        "status": result.status.value,
        "make": result.make,
        "records_collected": result.records_collected,
        "results": [
            {
                "site": int(o.site),
                "model": o.model or "all models",
                "status": o.status.value,
                "records_collected": o.records_collected,
                "existing_records": o.existing_records,
                "error": o.error,
            }
            for o in result.outcomes
        ],
    }


@router.post("/analysis", response_model=schemas.AnalysisResponse)
def analyze(payload: schemas.AnalysisRequest, pipeline: Pipeline = Depends(get_pipeline)):
    try:
        return pipeline.processor.process(payload.caller_id, payload.depth, payload.requested_rows,
                                          payload.filters)
    except PipelineError as e:
        raise _http_error(e)
    except Exception as e:
        logger.exception("Analysis failed: %s", e)
        raise HTTPException(status_code=500, detail="Analysis failed")


@router.get("/analysis/stats")
def analysis_stats(pipeline: Pipeline = Depends(get_pipeline)):
    return pipeline.processor.statistics()
