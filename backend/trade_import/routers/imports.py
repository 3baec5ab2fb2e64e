"""CSV trade import API router.

Provides endpoints for:
- Listing supported broker formats
- Previewing what an import of a file would do
- Running an import into a portfolio
- Following and cancelling a running import
- Listing the trades an import created
"""

import json
import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from sqlalchemy.orm import Session

from trade_import.config import settings
from trade_import.database import get_db
from trade_import.schemas.imports import (
    BrokerInfoResponse,
    ImportConfig,
    ImportPreviewResponse,
    ImportReportResponse,
    ProgressResponse,
)
from trade_import.schemas.trade import Trade as TradeSchema
from trade_import.services.batch_import_service import BatchImportService
from trade_import.services.brokers import BrokerAdapterRegistry
from trade_import.services.progress_tracker import ProgressTrackerRegistry
from trade_import.services.repositories import PortfolioRepository, TradeRepository
from trade_import.services.storage import SqlAlchemyTradeStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/imports", tags=["imports"])

SESSION_ID_PATTERN = r"^[A-Za-z0-9_-]+$"


def get_broker_registry(request: Request) -> BrokerAdapterRegistry:
    return request.app.state.broker_registry


def get_trackers(request: Request) -> ProgressTrackerRegistry:
    return request.app.state.trackers


def _build_config(portfolio_id: int, options: str | None) -> ImportConfig:
    """Parse the JSON options form field into an ImportConfig, raise 400 if invalid."""
    try:
        data = json.loads(options) if options else {}
        if not isinstance(data, dict):
            raise ValueError("options must be a JSON object")
        data["portfolio_id"] = portfolio_id
        return ImportConfig.model_validate(data)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid import options: {e}",
        )


async def _read_upload(file: UploadFile) -> bytes:
    """Read an uploaded CSV, raise 400 if empty and 413 if too large."""
    content = await file.read()
    if not content:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Empty file uploaded",
        )
    if len(content) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds the {settings.max_upload_bytes} byte upload limit",
        )
    return content


def _get_tracker(trackers: ProgressTrackerRegistry, session_id: str):
    tracker = trackers.get(session_id)
    if tracker is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Import session {session_id} not found",
        )
    return tracker


@router.get("/brokers", response_model=list[BrokerInfoResponse])
async def list_supported_brokers(
    registry: BrokerAdapterRegistry = Depends(get_broker_registry),
):
    """List the broker CSV formats the importer understands."""
    return [BrokerInfoResponse.model_validate(info) for info in registry.get_supported_brokers()]


@router.post("/preview", response_model=ImportPreviewResponse)
async def preview_import(
    file: UploadFile = File(...),
    portfolio_id: int = Form(0),
    options: str | None = Form(None),
    db: Session = Depends(get_db),
    registry: BrokerAdapterRegistry = Depends(get_broker_registry),
):
    """Preview the first rows of a CSV file.

    Does NOT modify the database - parses, detects the broker, normalizes
    and validates the first 10 rows only.
    """
    config = _build_config(portfolio_id, options)
    content = await _read_upload(file)

    service = BatchImportService(SqlAlchemyTradeStore(db), registry=registry)
    preview = service.preview_import(content, config)
    return ImportPreviewResponse.model_validate(preview)


@router.post("", response_model=ImportReportResponse)
async def import_trades(
    file: UploadFile = File(...),
    portfolio_id: int = Form(...),
    options: str | None = Form(None),
    session_id: str | None = Form(None, max_length=64, pattern=SESSION_ID_PATTERN),
    db: Session = Depends(get_db),
    registry: BrokerAdapterRegistry = Depends(get_broker_registry),
    trackers: ProgressTrackerRegistry = Depends(get_trackers),
):
    """Import option trades from a broker CSV export into a portfolio.

    Args:
        file: Broker CSV export
        portfolio_id: Portfolio to import into
        options: JSON object with ImportConfig fields (validation, batching, ...)
        session_id: Client-chosen id, so progress and cancel can reach the
            import while this request is still running

    Returns:
        The import report. Row-level problems do not fail the request; they
        are listed in the report's errors and warnings.

    Raises:
        400: Empty file or invalid options
        404: Portfolio not found
        409: An import with this session id is still running
        413: File too large
    """
    config = _build_config(portfolio_id, options)
    if not PortfolioRepository(db).exists(portfolio_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Portfolio {portfolio_id} not found",
        )
    if session_id:
        running = trackers.get(session_id)
        if running is not None and not running.is_finished:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Import {session_id} is still running",
            )
    content = await _read_upload(file)

    service = BatchImportService(SqlAlchemyTradeStore(db), registry=registry, trackers=trackers)
    report = await service.import_from_file(content, config, session_id=session_id)
    logger.info(f"Import {report.session_id} of {file.filename}: {report.message}")
    return ImportReportResponse.model_validate(report)


@router.get("/{session_id}/progress", response_model=ProgressResponse)
async def get_import_progress(
    session_id: str,
    trackers: ProgressTrackerRegistry = Depends(get_trackers),
):
    """Current progress of an import session."""
    tracker = _get_tracker(trackers, session_id)
    return ProgressResponse.model_validate(tracker.snapshot())


@router.post("/{session_id}/cancel", response_model=ProgressResponse)
async def cancel_import(
    session_id: str,
    trackers: ProgressTrackerRegistry = Depends(get_trackers),
):
    """Cancel a running import. It stops at its next chunk boundary.

    Raises:
        404: Unknown session
        409: Import already finished
    """
    tracker = _get_tracker(trackers, session_id)
    if tracker.is_finished:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Import {session_id} already finished with status {tracker.status.value}",
        )
    tracker.cancel()
    return ProgressResponse.model_validate(tracker.snapshot())


@router.get("/{session_id}/trades", response_model=list[TradeSchema])
async def list_imported_trades(session_id: str, db: Session = Depends(get_db)):
    """Trades created by an import session."""
    return TradeRepository(db).find_by_import_batch(session_id)
