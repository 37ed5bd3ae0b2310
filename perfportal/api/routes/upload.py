from __future__ import annotations

import logging
import re
import tempfile
from pathlib import Path
from typing import Optional
from uuid import UUID, uuid4

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from perfportal.api.deps import get_db
from perfportal.core.config import settings
from perfportal.core.metrics import metrics as processing_metrics
from perfportal.db import models
from perfportal.db.models import TestRunStatus, utc_now
from perfportal.ingestion import ExtractorConfig, check_upload
from perfportal.ingestion.errors import FileTooLargeError, UnsupportedFormatError
from perfportal.services.aggregation import AggregateMetrics, AggregationConfig
from perfportal.services.baseline import BaselineVerdict
from perfportal.services.test_run_processing import TestRunProcessingError, process_test_run

router = APIRouter(prefix="/upload", tags=["upload"])
logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024
_SANITIZE_PATTERN = re.compile(r"[^A-Za-z0-9_.-]")


class UploadResult(BaseModel):
    test_run_id: str
    status: str
    message: str
    rows_parsed: int = 0
    rows_skipped: int = 0
    rows_processed: int = 0
    warnings: list[str] = []
    metrics: Optional[AggregateMetrics] = None
    verdict: Optional[BaselineVerdict] = None
    error: Optional[str] = None


def _sanitize_filename_for_storage(name: str) -> str:
    cleaned = (name or "results.jtl").strip()
    sanitized = _SANITIZE_PATTERN.sub("_", cleaned)
    if not sanitized or set(sanitized) <= {"_", "."}:
        return "results.jtl"
    return sanitized


def _ensure_storage_directory(storage_dir: Path) -> Path:
    """Ensure the storage directory exists and is writable."""

    try:
        storage_dir.mkdir(parents=True, exist_ok=True)
        storage_root = storage_dir.resolve(strict=False)
        with tempfile.NamedTemporaryFile(dir=storage_root, prefix=".perfportal_write_test"):
            pass
    except OSError as exc:
        logger.exception("Storage directory %s is not writable", storage_dir)
        raise HTTPException(
            status_code=500, detail=f"Storage directory '{storage_dir}' is not writable"
        ) from exc
    return storage_root


def _remove_file_if_exists(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError:
        logger.warning("Unable to remove file %s during cleanup", path, exc_info=True)


async def _store_upload(upload: UploadFile, file_path: Path, limit: int) -> int:
    """Copy the upload to disk in chunks, refusing to write past `limit` bytes."""

    written = 0
    try:
        with file_path.open("wb") as handle:
            while True:
                chunk = await upload.read(_CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > limit:
                    raise FileTooLargeError(written, limit)
                handle.write(chunk)
    except FileTooLargeError:
        _remove_file_if_exists(file_path)
        raise
    except OSError as exc:
        _remove_file_if_exists(file_path)
        logger.exception("Failed to persist uploaded file to %s", file_path)
        raise HTTPException(status_code=500, detail="Failed to persist uploaded file to storage") from exc
    return written


def _resolve_test_run(
    session: Session,
    *,
    capability: models.Capability,
    test_run_id: Optional[UUID],
    test_name: str,
    build_number: str,
    description: Optional[str],
    uploaded_by: str,
    file_name: str,
    storage_path: str,
) -> models.TestRun:
    if test_run_id is not None:
        test_run = session.get(models.TestRun, test_run_id)
        if not test_run:
            raise HTTPException(status_code=404, detail=f"Test run not found: {test_run_id}")
        if test_run.capability_id != capability.id:
            raise HTTPException(
                status_code=400, detail="Capability does not match the provided test run"
            )
        logger.info("Reusing test run %s for upload %s", test_run.id, file_name)
    else:
        test_run = models.TestRun(capability_id=capability.id, test_name=test_name)

    test_run.test_name = test_name
    test_run.build_number = build_number
    test_run.description = description
    test_run.uploaded_by = uploaded_by
    test_run.file_name = file_name
    test_run.file_type = "jtl"
    test_run.storage_path = storage_path
    test_run.status = TestRunStatus.UPLOADED
    test_run.error_message = None
    test_run.updated_at = utc_now()
    return test_run


@router.post("", response_model=UploadResult, summary="Upload and process a JTL result file")
async def upload_results(
    capability: str = Form(...),
    test_name: str = Form(..., alias="testName"),
    build_number: str = Form(..., alias="buildNumber"),
    description: Optional[str] = Form(None),
    uploaded_by: Optional[str] = Form(None, alias="uploadedBy"),
    test_run_id: Optional[UUID] = Form(None, alias="testRunId"),
    file: UploadFile = File(...),
    session: Session = Depends(get_db),
):
    """
    Upload a JMeter `.jtl` file for a capability and process it synchronously.

    - **capability**: capability name the test run belongs to
    - **testName** / **buildNumber**: identify the run
    - **testRunId**: optional existing run to re-use
    """

    original_name = Path(file.filename or "").name
    config = ExtractorConfig.from_settings(settings)
    logger.info(
        "Upload request received: filename=%s capability=%s test=%s build=%s",
        original_name,
        capability,
        test_name,
        build_number,
    )
    processing_metrics.record_upload(capability=capability)

    try:
        check_upload(original_name, getattr(file, "size", None), config)
    except UnsupportedFormatError as exc:
        processing_metrics.record_failure(
            capability=capability, error_type="UnsupportedFormatError", reason=exc.message, rejected=True
        )
        raise HTTPException(status_code=400, detail=exc.message) from exc
    except FileTooLargeError as exc:
        processing_metrics.record_failure(
            capability=capability, error_type="FileTooLargeError", reason=exc.message, rejected=True
        )
        raise HTTPException(status_code=413, detail=exc.message) from exc

    cap = session.exec(
        select(models.Capability).where(models.Capability.name == capability.strip())
    ).first()
    if not cap:
        raise HTTPException(status_code=404, detail=f"Capability not found: {capability}")

    storage_root = _ensure_storage_directory(Path(settings.ingestion_storage_dir))
    timestamp = utc_now().strftime("%Y%m%dT%H%M%SZ")
    storage_filename = (
        f"{timestamp}_{uuid4().hex[-8:]}_{_sanitize_filename_for_storage(original_name)}"
    )
    file_path = storage_root / storage_filename

    try:
        size = await _store_upload(file, file_path, config.max_bytes)
    except FileTooLargeError as exc:
        processing_metrics.record_failure(
            capability=cap.name, error_type="FileTooLargeError", reason=exc.message, rejected=True
        )
        raise HTTPException(status_code=413, detail=exc.message) from exc
    logger.info("Saved upload to %s (%d bytes)", file_path.as_posix(), size)

    test_run = _resolve_test_run(
        session,
        capability=cap,
        test_run_id=test_run_id,
        test_name=test_name.strip(),
        build_number=build_number.strip(),
        description=description,
        uploaded_by=(uploaded_by or "").strip() or settings.default_uploaded_by,
        file_name=original_name,
        storage_path=file_path.as_posix(),
    )
    session.add(test_run)
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Failed to persist test run metadata for %s", file_path)
        _remove_file_if_exists(file_path)
        raise HTTPException(status_code=500, detail="Failed to persist test run metadata") from exc
    session.refresh(test_run)

    try:
        result = process_test_run(
            session=session,
            test_run=test_run,
            file_path=file_path,
            extractor_config=config,
            aggregation_config=AggregationConfig.from_settings(settings),
        )
    except TestRunProcessingError as exc:
        payload = UploadResult(
            test_run_id=exc.test_run_id,
            status=exc.status,
            message="Processing failed",
            rows_processed=exc.rows_processed,
            error=exc.message,
        )
        return JSONResponse(status_code=422, content=payload.model_dump(mode="json"))

    return UploadResult(
        test_run_id=result.test_run_id,
        status=result.status,
        message=result.message,
        rows_parsed=result.rows_parsed,
        rows_skipped=result.rows_skipped,
        rows_processed=result.rows_parsed,
        warnings=result.warnings,
        metrics=result.metrics,
        verdict=result.verdict,
    )
