from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile, WebSocket, WebSocketDisconnect
from typing import Optional
import asyncio
import json

from voterpulse.api.dependencies import (
    TenantContext,
    get_import_runner,
    get_import_tracker,
    get_organization_service,
    require_permission,
)
from voterpulse.api.exceptions import APIError, NotFoundError, TooManyImportsError, ValidationError
from voterpulse.api.security import BULK_RATE_LIMIT, limiter, log_security_event, reserve_import_capacity
from voterpulse.config import config
from voterpulse.models.schemas import ImportPreview
from voterpulse.services.import_pipeline.column_mapper import (
    ELECTION_FILE_COLUMNS,
    IMPORT_TYPES,
    VOTER_FILE_COLUMNS,
    suggest_column_mapping,
    validate_column_mapping,
)
from voterpulse.services.import_pipeline.job_tracker import (
    TERMINAL_STATUSES,
    ImportJobTracker,
    serialize_job,
)
from voterpulse.services.import_pipeline.parser import normalize_encoding, preview
from voterpulse.services.import_pipeline.runner import ImportRunner, release_import_slot, start_import_task
from voterpulse.services.organizations import OrganizationService
from voterpulse.services.shared.exceptions import ColumnMappingError, VoterPulseError
from voterpulse.utils.logging import get_logger
from voterpulse.utils.thread_pool import async_read_chunks, remove_spooled_file, spool_to_temp_file

logger = get_logger(__name__)

router = APIRouter()

WEBSOCKET_POLL_SECONDS = 1.0


def _resolve_encoding(encoding: Optional[str]) -> str:
    """Canonical codec name for an upload, falling back to IMPORT_ENCODING"""
    try:
        return normalize_encoding(encoding or config.IMPORT_ENCODING)
    except LookupError:
        raise ValidationError(f"Unknown encoding: {encoding}", details={"encoding": encoding})


@router.get("/jobs")
async def list_import_jobs(
    limit: int = Query(50, ge=1, le=200),
    tenant: TenantContext = Depends(require_permission("can_import_data")),
    tracker: ImportJobTracker = Depends(get_import_tracker)
):
    """List the organization's most recent import jobs"""
    try:
        jobs = await tracker.list_jobs(tenant.organization_id, limit=limit)
        return [serialize_job(job) for job in jobs]
    except Exception as e:
        logger.error(f"Error listing import jobs: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to list import jobs: {str(e)}")


@router.get("/jobs/{job_id}")
async def get_import_job(
    job_id: str,
    tenant: TenantContext = Depends(require_permission("can_import_data")),
    tracker: ImportJobTracker = Depends(get_import_tracker)
):
    """Get job status (live progress while processing)"""
    try:
        status = await tracker.get_status(job_id, tenant.organization_id)
        if status is None:
            raise NotFoundError("Import job not found", details={"job_id": job_id})
        return status
    except APIError:
        raise
    except Exception as e:
        logger.error(f"Error getting import job {job_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to get import job: {str(e)}")


@router.post("/jobs/{job_id}/cancel")
async def cancel_import_job(
    job_id: str,
    tenant: TenantContext = Depends(require_permission("can_import_data")),
    tracker: ImportJobTracker = Depends(get_import_tracker)
):
    """Ask a running import to stop after its current row"""
    try:
        accepted = await tracker.request_cancel(job_id, tenant.organization_id)
        if not accepted:
            raise HTTPException(status_code=400, detail="Job cannot be cancelled (not running or not found)")
        return {"message": f"Cancellation requested for job {job_id}", "jobId": job_id}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error cancelling import job {job_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to cancel import job: {str(e)}")


@router.post("/preview", response_model=ImportPreview)
async def preview_import_file(
    file: UploadFile = File(...),
    encoding: Optional[str] = Form(None),
    tenant: TenantContext = Depends(require_permission("can_import_data"))
):
    """Headers, sample rows and a suggested mapping from the head of a file"""
    try:
        head = await file.read(config.IMPORT_PREVIEW_BYTES + 1)
        complete = len(head) <= config.IMPORT_PREVIEW_BYTES
        result = preview(
            head[:config.IMPORT_PREVIEW_BYTES],
            max_rows=config.IMPORT_PREVIEW_ROWS,
            complete=complete,
            encoding=_resolve_encoding(encoding),
        )
        if not result.headers:
            raise ValidationError("File has no header row")
        return ImportPreview(
            headers=result.headers,
            sampleRows=result.sample_rows,
            suggestedMapping=suggest_column_mapping(result.headers),
        )
    except APIError:
        raise
    except Exception as e:
        logger.error(f"Error previewing import file: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to preview file: {str(e)}")
    finally:
        await file.close()


@router.post("/upload")
@limiter.limit(BULK_RATE_LIMIT)
async def upload_import_file(
    request: Request,
    file: UploadFile = File(...),
    type: str = Form(...),
    columnMapping: str = Form(...),
    encoding: Optional[str] = Form(None),
    tenant: TenantContext = Depends(require_permission("can_import_data")),
    tracker: ImportJobTracker = Depends(get_import_tracker),
    runner: ImportRunner = Depends(get_import_runner)
):
    """
    Start a background import.

    The upload is spooled to a temporary file so the import can keep reading
    after this request has returned.
    """
    try:
        if type not in IMPORT_TYPES:
            raise ValidationError(f"type must be one of {', '.join(IMPORT_TYPES)}")
        try:
            raw_mapping = json.loads(columnMapping)
        except json.JSONDecodeError:
            raise ValidationError("columnMapping must be a JSON object")
        mapping = validate_column_mapping(raw_mapping, type)
        encoding = _resolve_encoding(encoding)

        if not reserve_import_capacity():
            log_security_event("resource_limit", {
                "organization_id": tenant.organization_id,
                "max_concurrent_imports": config.MAX_CONCURRENT_IMPORTS
            })
            raise TooManyImportsError(
                f"Too many imports running (max {config.MAX_CONCURRENT_IMPORTS}). Try again when one finishes."
            )

        # The reserved slot and the spooled file pass to the import task once it starts
        started = False
        spooled_path = None
        try:
            spooled_path = await spool_to_temp_file(file.file)
            job = await tracker.create_job(
                organization_id=tenant.organization_id,
                import_type=type,
                file_name=file.filename,
                column_mapping=mapping,
                created_by=tenant.user_id,
            )
            start_import_task(
                runner,
                job_id=job.id,
                organization_id=tenant.organization_id,
                import_type=type,
                column_mapping=mapping,
                chunks=async_read_chunks(spooled_path, remove_when_done=True),
                encoding=encoding,
            )
            started = True
        finally:
            if not started:
                release_import_slot()
                if spooled_path is not None:
                    remove_spooled_file(spooled_path)

        logger.info(
            f"Queued {type} import {job.id} ({file.filename})",
            extra={"job_id": job.id, "organization_id": tenant.organization_id}
        )
        return {"jobId": job.id, "message": "Import started"}
    except (APIError, ColumnMappingError):
        raise
    except Exception as e:
        logger.error(f"Error starting import: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to start import: {str(e)}")
    finally:
        await file.close()


@router.get("/mn-mapping")
async def get_state_file_mapping(
    tenant: TenantContext = Depends(require_permission("can_import_data"))
):
    """Built-in header tables for the state voter and election files"""
    return {"voterFile": VOTER_FILE_COLUMNS, "electionHistory": ELECTION_FILE_COLUMNS}


async def _authorize_websocket(
    websocket: WebSocket,
    organization_service: OrganizationService
) -> Optional[int]:
    """Organization id for a websocket caller, or None if not a member"""
    user_id = websocket.query_params.get("userId") or websocket.headers.get("X-User-Id")
    organization_id = websocket.query_params.get("organizationId") or websocket.headers.get("X-Organization-Id")
    try:
        user_id, organization_id = int(user_id), int(organization_id)
    except (TypeError, ValueError):
        return None
    membership = await organization_service.get_active_membership(organization_id, user_id)
    return organization_id if membership is not None else None


@router.websocket("/ws/{job_id}")
async def websocket_job_status(websocket: WebSocket, job_id: str):
    """WebSocket endpoint for real-time import progress"""
    await websocket.accept()
    tracker = get_import_tracker()

    try:
        organization_id = await _authorize_websocket(websocket, get_organization_service())
        if organization_id is None:
            await websocket.send_json({"type": "error", "message": "Not authorized"})
            return

        last_sent = None
        while True:
            status = await tracker.get_status(job_id, organization_id)
            if status is None:
                await websocket.send_json({"type": "error", "message": "Job not found"})
                break

            message = {
                "type": status["status"] if status["status"] in TERMINAL_STATUSES else "progress",
                "jobId": job_id,
                "data": status
            }
            snapshot = (status["status"], status["processedRows"])
            if snapshot != last_sent:
                await websocket.send_json(message)
                last_sent = snapshot

            if status["status"] in TERMINAL_STATUSES:
                break
            await asyncio.sleep(WEBSOCKET_POLL_SECONDS)

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for import job {job_id}")
    except VoterPulseError as e:
        logger.warning(f"WebSocket for import job {job_id} stopped: {e}")
    except Exception as e:
        logger.error(f"Error in WebSocket for import job {job_id}: {e}", exc_info=True)
        try:
            await websocket.send_json({"type": "error", "message": str(e)})
        except Exception as ws_err:
            logger.debug(f"Error sending WebSocket message: {ws_err}")
    finally:
        try:
            await websocket.close()
        except Exception as close_err:
            logger.debug(f"Error closing WebSocket: {close_err}")
