"""
HTTP surface for the TCM record ledger client.

Exposes the synchronization orchestrator: the latest record snapshot,
creation, analyze/archive transitions, the transient transaction status and
the wallet account session.
"""

import logging

from fastapi import Depends, FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..core.config import VERSION, debug_enabled, validate_config
from ..core.errors import (
    NotFoundError,
    RecordError,
    RecordParseError,
    RejectedError,
    RemoteFailure,
    UnavailableError,
)
from ..core.schema import CreationStatus
from ..core.sync import RecordSynchronizer
from .schemas import (
    AccountChangeRequest,
    AvailabilityResponse,
    CreateResponse,
    ErrorResponse,
    HealthResponse,
    RecordCreateRequest,
    RecordListResponse,
    RecordResponse,
    RepairResponse,
    SessionResponse,
    StatsResponse,
    StatusResponse,
    TransitionResponse,
)

ERROR_STATUS_CODES = {
    RejectedError: 403,
    NotFoundError: 404,
    RecordParseError: 422,
    RemoteFailure: 502,
    UnavailableError: 503,
}

config_issues = validate_config()
if config_issues:
    logging.warning(f"Configuration issues: {config_issues}")

# Initialize the FastAPI application
app = FastAPI(
    title="TCM Record Ledger API",
    version=VERSION,
    description="Confidential TCM diagnosis records synchronized with a ledger key-value contract",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_synchronizer = None


def get_synchronizer() -> RecordSynchronizer:
    """Lazy initialization of the record synchronizer."""
    global _synchronizer
    if _synchronizer is None:
        _synchronizer = RecordSynchronizer()
    return _synchronizer


def _record_response(sync: RecordSynchronizer, record) -> RecordResponse:
    return RecordResponse.from_record(record, sync.can_act(record))


def _list_response(sync: RecordSynchronizer) -> RecordListResponse:
    snapshot = sync.snapshot
    return RecordListResponse(
        records=[_record_response(sync, r) for r in snapshot],
        account=sync.session.account,
        refreshing=sync.refreshing,
        loaded_at=snapshot.loaded_at,
    )


@app.get("/health", response_model=HealthResponse)
async def health_check_endpoint(sync: RecordSynchronizer = Depends(get_synchronizer)):
    """Check ledger availability."""
    available = await sync.store.probe()
    return HealthResponse(
        status="healthy" if available else "unavailable",
        version=VERSION,
        available=available,
        record_count=len(sync.snapshot),
    )


# Define fixed /records/* paths BEFORE /records/{record_id} to avoid path parameter conflict
@app.get("/records", response_model=RecordListResponse)
async def list_records_endpoint(sync: RecordSynchronizer = Depends(get_synchronizer)):
    if sync.snapshot.loaded_at is None:
        # First view triggers the initial load
        await sync.full_reload()
    return _list_response(sync)


@app.post("/records/refresh", response_model=RecordListResponse)
async def refresh_records_endpoint(sync: RecordSynchronizer = Depends(get_synchronizer)):
    await sync.full_reload()
    return _list_response(sync)


@app.get("/records/stats", response_model=StatsResponse)
async def record_stats_endpoint(sync: RecordSynchronizer = Depends(get_synchronizer)):
    counts = sync.snapshot.counts()
    return StatsResponse(
        total=counts["total"],
        pending=counts["pending"],
        analyzed=counts["analyzed"],
        archived=counts["archived"],
        distribution=sync.snapshot.distribution(),
    )


@app.get("/records/{record_id}", response_model=RecordResponse)
async def get_record_endpoint(record_id: str, sync: RecordSynchronizer = Depends(get_synchronizer)):
    record = sync.snapshot.find(record_id)
    if not record:
        raise NotFoundError(record_id)
    return _record_response(sync, record)


@app.post("/records", response_model=CreateResponse, status_code=201)
async def create_record_endpoint(request: RecordCreateRequest, response: Response,
                                 sync: RecordSynchronizer = Depends(get_synchronizer)):
    outcome = await sync.create_record(
        symptom_pattern=request.symptom_pattern,
        herb_formula=request.herb_formula,
        patient_info=request.patient_info,
    )

    if outcome.status == CreationStatus.FAILED:
        raise outcome.error

    if outcome.status == CreationStatus.CREATED_UNINDEXED:
        response.status_code = 202

    return CreateResponse(
        status=outcome.status.value,
        record_id=outcome.record_id,
        message=sync.status.current().message,
    )


@app.post("/records/{record_id}/analyze", response_model=TransitionResponse)
async def analyze_record_endpoint(record_id: str, sync: RecordSynchronizer = Depends(get_synchronizer)):
    outcome = await sync.analyze_record(record_id)
    if not outcome.ok:
        raise outcome.error
    return TransitionResponse(record=_record_response(sync, outcome.record),
                              message="FHE analysis completed successfully!")


@app.post("/records/{record_id}/archive", response_model=TransitionResponse)
async def archive_record_endpoint(record_id: str, sync: RecordSynchronizer = Depends(get_synchronizer)):
    outcome = await sync.archive_record(record_id)
    if not outcome.ok:
        raise outcome.error
    return TransitionResponse(record=_record_response(sync, outcome.record),
                              message="Record archived successfully!")


@app.get("/status", response_model=StatusResponse)
async def transaction_status_endpoint(sync: RecordSynchronizer = Depends(get_synchronizer)):
    current = sync.status.current()
    return StatusResponse(visible=current.visible, status=current.status, message=current.message)


@app.put("/session/account", response_model=SessionResponse)
async def change_account_endpoint(request: AccountChangeRequest,
                                  sync: RecordSynchronizer = Depends(get_synchronizer)):
    sync.session.on_accounts_changed(request.accounts)
    return SessionResponse(account=sync.session.account, connected=sync.session.is_connected)


@app.delete("/session/account", response_model=SessionResponse)
async def disconnect_account_endpoint(sync: RecordSynchronizer = Depends(get_synchronizer)):
    sync.session.disconnect()
    return SessionResponse(account="", connected=False)


@app.post("/availability", response_model=AvailabilityResponse)
async def check_availability_endpoint(sync: RecordSynchronizer = Depends(get_synchronizer)):
    return AvailabilityResponse(available=await sync.check_availability())


@app.post("/admin/repair-index", response_model=RepairResponse)
async def repair_index_endpoint(sync: RecordSynchronizer = Depends(get_synchronizer)):
    """Index orphaned records left by failed index appends."""
    added = await sync.repair_index()
    return RepairResponse(added=added, remaining=list(sync.unindexed_ids))


@app.exception_handler(RecordError)
async def record_error_handler(request, exc: RecordError):
    """Map record-layer failures to HTTP errors."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    body = ErrorResponse(error_type=exc.kind, message=exc.message,
                         details=exc.details if debug_enabled() else None)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle all unhandled exceptions."""
    logging.error(f"Unhandled exception: {exc}")
    content = {"detail": "Internal server error"}
    if debug_enabled():
        content["debug"] = str(exc)
    return JSONResponse(status_code=500, content=content)
