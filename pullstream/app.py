import datetime
import logging
import os
import time
from typing import Any, Callable, Dict, Optional

import psutil
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from pullstream.driver import drain_all, drain_all_async
from pullstream.errors import StreamError
from pullstream.models import (
    ErrorResponse, OperationSpec, OperationType, PaginateResponse,
    PipelineRequest, PipelineResponse, StatusResponse
)
from pullstream.async_engine import from_async_paginated_fetch
from pullstream.operators import batch, filter, flatten, map, skip, take
from pullstream.sequence import Sequence, from_collection, from_range
from pullstream.utils import InMemoryPageSource, measure_performance, setup_logging

setup_logging()
logger = logging.getLogger('pullstream.app')

app = FastAPI()
_started_at = time.time()

# Named functions a pipeline may reference; arguments come from OperationSpec.arg.
MAPPERS: Dict[str, Callable[[Any, Any], Any]] = {
    "identity": lambda x, arg: x,
    "multiply": lambda x, arg: x * (1 if arg is None else arg),
    "add": lambda x, arg: x + (0 if arg is None else arg),
    "square": lambda x, arg: x * x,
    "negate": lambda x, arg: -x,
    "to_string": lambda x, arg: str(x),
}

PREDICATES: Dict[str, Callable[[Any, Any], bool]] = {
    "even": lambda x, arg: x % 2 == 0,
    "odd": lambda x, arg: x % 2 == 1,
    "divisible_by": lambda x, arg: x % arg == 0,
    "greater_than": lambda x, arg: x > arg,
    "less_than": lambda x, arg: x < arg,
    "truthy": lambda x, arg: bool(x),
}


def _bind(registry: Dict[str, Callable[[Any, Any], Any]], op: OperationSpec) -> Callable[[Any], Any]:
    func = registry.get(op.fn)
    if func is None:
        raise HTTPException(
            status_code=422,
            detail=f"Unknown {op.type.value} function '{op.fn}'. Valid: {sorted(registry)}"
        )
    arg = op.arg
    return lambda x: func(x, arg)


def build_pipeline(request: PipelineRequest) -> Sequence:
    """Turn a validated request into a lazy pipeline. Pulls nothing."""
    if request.range is not None:
        seq = from_range(request.range.start, request.range.end, request.range.step)
    else:
        seq = from_collection(request.items)

    for op in request.operations:
        if op.type is OperationType.MAP:
            seq = map(seq, _bind(MAPPERS, op))
        elif op.type is OperationType.FILTER:
            seq = filter(seq, _bind(PREDICATES, op))
        elif op.type is OperationType.TAKE:
            seq = take(seq, op.count)
        elif op.type is OperationType.SKIP:
            seq = skip(seq, op.count)
        elif op.type is OperationType.BATCH:
            seq = batch(seq, op.size)
        elif op.type is OperationType.FLATTEN:
            seq = flatten(seq, op.depth)
    return seq


def _error_response(status_code: int, error: Exception, details: Optional[Dict[str, Any]] = None) -> JSONResponse:
    body = ErrorResponse(
        error=str(error),
        error_type=type(error).__name__,
        details=details,
        timestamp=datetime.datetime.now(datetime.timezone.utc),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.exception_handler(StreamError)
async def stream_error_handler(request: Request, exc: StreamError) -> JSONResponse:
    logger.warning(f"Stream error on {request.url.path}: {exc}")
    return _error_response(422, exc, {k: str(v) for k, v in exc.context.items()})


@app.post("/pipelines/run", response_model=PipelineResponse)
async def run_pipeline(request: PipelineRequest) -> PipelineResponse:
    """
    Build the pipeline described by the request and drain it eagerly.
    A producer fault (e.g. a mapper raising) yields a 400 ErrorResponse.
    """
    seq = build_pipeline(request)
    operations_applied = [op.type.value for op in request.operations]

    try:
        result, report = measure_performance("pipeline", drain_all, seq)
    except StreamError:
        raise
    except Exception as e:
        logger.error(f"Pipeline failed: {e}", exc_info=True)
        return _error_response(400, e, {"operations_applied": operations_applied})

    return PipelineResponse(
        result=result,
        operations_applied=operations_applied,
        performance=report,
    )


@app.get("/pipelines/paginate", response_model=PaginateResponse)
async def paginate_demo(
    total: int = Query(20, ge=0, le=100_000, description="Number of items in the source"),
    page_size: int = Query(5, ge=1, le=1000, description="Items per page"),
    limit: Optional[int] = Query(None, ge=0, description="Stop after this many items"),
) -> PaginateResponse:
    """Drain an in-memory paginated source through the async engine."""
    source = InMemoryPageSource(range(total), page_size)
    seq = from_async_paginated_fetch(source)
    if limit is not None:
        seq = take(seq, limit)

    items = await drain_all_async(seq)
    logger.info(f"Paginated {len(items)} items in {source.fetch_count} fetches")
    return PaginateResponse(items=items, fetch_count=source.fetch_count, page_size=page_size)


@app.get("/status", response_model=StatusResponse)
async def status() -> StatusResponse:
    process = psutil.Process(os.getpid())
    return StatusResponse(
        status="running",
        uptime_seconds=time.time() - _started_at,
        memory_usage_mb=process.memory_info().rss / 1024 / 1024,
    )
