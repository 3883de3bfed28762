"""HTTP wrapper around a single advisor run."""

import hmac
import uuid
from datetime import datetime, timezone
from pathlib import Path

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, UploadFile, status
from fastapi.responses import JSONResponse

from .agent import run_agent
from .config import settings
from .errors import FetchError, SchemaError, VelopassError
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="velopass/api")

UPLOAD_CHUNK_BYTES = 1024 * 1024


def require_api_key(x_api_key: str | None = Header(default=None)):
    """
    Validate the X-API-Key header against the static api_key setting.
    """
    # If no key is configured, allow requests (dev/default mode).
    if not settings.api_key:
        logger.debug("No API key configured; allowing all requests")
        return

    if not x_api_key:
        logger.debug("No API key provided")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")

    if hmac.compare_digest(str(x_api_key), str(settings.api_key)):
        return

    logger.debug("Invalid API key provided")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


router = APIRouter()


def _error(status_code: int, message: str, timeline: list | None = None) -> JSONResponse:
    body = {"success": False, "error": message}
    if timeline:
        body["timeline"] = [entry.model_dump(mode="json") for entry in timeline]
    return JSONResponse(status_code=status_code, content=body)


def _status_for(exc: Exception) -> int:
    if isinstance(exc, SchemaError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, FetchError):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _store_upload(upload: UploadFile, run_id: str) -> Path:
    """Copy the upload into upload_dir, keeping its extension so the right loader is chosen."""
    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    suffix = Path(upload.filename or "").suffix.lower()
    target = upload_dir / f"{run_id}{suffix}"

    written = 0
    with target.open("wb") as fh:
        while True:
            chunk = upload.file.read(UPLOAD_CHUNK_BYTES)
            if not chunk:
                break
            written += len(chunk)
            if written > settings.max_upload_bytes:
                break
            fh.write(chunk)
    if written > settings.max_upload_bytes:
        target.unlink(missing_ok=True)
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Upload exceeds {settings.max_upload_bytes} bytes.",
        )
    return target


@router.get("/health")
def health():
    """Liveness probe."""
    return {"success": True, "ts": datetime.now(timezone.utc).isoformat(), "message": "ok"}


@router.post("/run-agent", dependencies=[Depends(require_api_key)])
def run_agent_endpoint(
    tripsFile: UploadFile | None = File(default=None),
    pricingUrl: str | None = Form(default=None),
):
    """Run the advisor on an uploaded trip file; the stored file is always removed afterwards."""
    run_id = str(uuid.uuid4())
    pricing_url = (pricingUrl or "").strip()

    if tripsFile is None or not tripsFile.filename:
        return _error(status.HTTP_400_BAD_REQUEST, "Missing trip file upload.")
    if not pricing_url:
        return _error(status.HTTP_400_BAD_REQUEST, "Missing pricing URL.")

    dataset_path = _store_upload(tripsFile, run_id)
    try:
        result = run_agent(run_id, str(dataset_path), pricing_url, settings=settings)
    except VelopassError as e:
        logger.warning(
            "Run %s failed for %s: %s", run_id, mask_url(pricing_url), e.message,
            extra={"error_type": type(e).__name__},
        )
        return _error(_status_for(e), e.message, e.timeline)
    except Exception as e:
        logger.exception("Run %s crashed", run_id)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e) or "Agent run failed.")
    finally:
        dataset_path.unlink(missing_ok=True)

    return {"success": True, "data": result.model_dump(mode="json")}
