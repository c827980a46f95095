"""
MedProof - FastAPI Application
Record upload, consent requests, integrity verification and audit queries
"""

from fastapi import FastAPI, HTTPException, Depends, Request, Query
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
import base64
import binascii
import logging
import structlog

from pydantic import BaseModel, Field

from .audit import AuditAction, AuditFilter
from .config import get_config
from .consent import ConsentDecision, ConsentStatus
from .constants import SERVICE_NAME, SERVICE_VERSION
from .context import AccessContext
from .exceptions import (
    BackendError,
    ConsentRequiredError,
    MedProofError,
    NotFoundError,
    StateError,
    ValidationError,
    AlreadyAnchoredError,
)
from .service import MedProofService, build_service

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Global settings
settings = get_config()
logging.basicConfig(level=settings.log_level.upper(), format="%(message)s")

# Initialize services
medproof_service: Optional[MedProofService] = None


class UploadRecordIn(BaseModel):
    subject_id: str
    record_type: str
    title: str
    custodian_id: str
    content_base64: str = Field(..., description="Plaintext record content, base64 encoded")
    mime_type: Optional[str] = None


class VerifyRecordIn(BaseModel):
    requester_id: str


class ConsentRequestIn(BaseModel):
    subject_id: str
    requester_id: str
    requester_type: str
    record_id: str
    expiry_hours: Optional[int] = Field(default=None, description="Defaults to the service setting")
    purpose: Optional[str] = None


class ResolveConsentIn(BaseModel):
    decision: ConsentDecision


class MedProofConfigOut(BaseModel):
    """Subset of configuration exposed via API for admin/ops UI."""

    backend: str
    address_strategy: str
    consent_mode: str
    default_expiry_hours: int
    max_expiry_hours: int
    retry_attempts: int
    operation_timeout_seconds: float
    encryption_key_configured: bool
    debug_mode: bool
    log_level: str


def _http_error(exc: MedProofError) -> HTTPException:
    """Map a typed error to its HTTP status"""
    if isinstance(exc, ValidationError):
        status_code = 400
    elif isinstance(exc, ConsentRequiredError):
        status_code = 403
    elif isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, (StateError, AlreadyAnchoredError)):
        status_code = 409
    elif isinstance(exc, BackendError):
        status_code = 502
    else:
        status_code = 500
    return HTTPException(status_code=status_code, detail=exc.to_dict())


def get_service() -> MedProofService:
    if medproof_service is None:
        raise HTTPException(status_code=503, detail="MedProof service not available")
    return medproof_service


def get_context(request: Request) -> Optional[AccessContext]:
    """Acting party from X-Accessor-Id / X-Accessor-Type headers, if given"""
    accessor_id = request.headers.get("x-accessor-id")
    if not accessor_id:
        return None
    return AccessContext(
        accessor_id=accessor_id,
        accessor_type=request.headers.get("x-accessor-type", "unknown"),
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    global medproof_service

    logger.info("Starting MedProof", version=SERVICE_VERSION, backend=settings.backend.value)

    # Initialize only if not already provided (for testing/injection)
    if medproof_service is None:
        medproof_service = build_service(settings)

    yield

    logger.info("Shutting down MedProof")
    if medproof_service is not None:
        medproof_service.close()


# Create FastAPI app
app = FastAPI(
    title="MedProof",
    description="Tamper-evident medical records with patient consent and audit",
    version=SERVICE_VERSION,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "components": {
            "service": medproof_service is not None,
        },
    }


@app.get("/config", response_model=MedProofConfigOut)
async def get_service_config(service: MedProofService = Depends(get_service)):
    """Return a sanitized view of the serving configuration; the key itself is never exposed"""
    config = service.config
    return MedProofConfigOut(
        backend=config.backend.value,
        address_strategy=config.address_strategy.value,
        consent_mode=config.consent_mode.value,
        default_expiry_hours=config.default_expiry_hours,
        max_expiry_hours=config.max_expiry_hours,
        retry_attempts=config.retry_attempts,
        operation_timeout_seconds=config.operation_timeout_seconds,
        encryption_key_configured=bool(config.encryption_key),
        debug_mode=config.debug_mode,
        log_level=config.log_level,
    )


@app.post("/records", status_code=201)
def upload_record(payload: UploadRecordIn,
                  service: MedProofService = Depends(get_service),
                  context: Optional[AccessContext] = Depends(get_context)):
    """Encrypt, store and anchor a record"""
    try:
        content = base64.b64decode(payload.content_base64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="content_base64 is not valid base64")

    try:
        record = service.upload_record(
            payload.subject_id,
            payload.record_type,
            payload.title,
            payload.custodian_id,
            content,
            context=context,
            mime_type=payload.mime_type,
        )
    except MedProofError as e:
        logger.error("Failed to upload record", subject_id=payload.subject_id, error=e.message)
        raise _http_error(e)

    return record.model_dump(mode="json")


@app.get("/records/{record_id}")
def get_record(record_id: str, service: MedProofService = Depends(get_service)):
    """Record metadata"""
    try:
        return service.get_record(record_id).model_dump(mode="json")
    except MedProofError as e:
        raise _http_error(e)


@app.get("/records/{record_id}/content")
def download_record(record_id: str,
                    requester_id: str = Query(...),
                    service: MedProofService = Depends(get_service),
                    context: Optional[AccessContext] = Depends(get_context)):
    """Decrypted record content for the subject, custodian or a consented requester"""
    try:
        content = service.download_record(record_id, requester_id, context=context)
    except MedProofError as e:
        logger.warning("Download failed", record_id=record_id, requester_id=requester_id,
                       error=e.message)
        raise _http_error(e)

    return {"record_id": record_id, "content_base64": base64.b64encode(content).decode("ascii")}


@app.get("/subjects/{subject_id}/records")
def list_records(subject_id: str, service: MedProofService = Depends(get_service)):
    """Records of a subject, newest first"""
    try:
        records = service.list_records(subject_id)
    except MedProofError as e:
        raise _http_error(e)
    return {"subject_id": subject_id, "records": [r.model_dump(mode="json") for r in records]}


@app.post("/records/{record_id}/verify")
def verify_record(record_id: str, payload: VerifyRecordIn,
                  service: MedProofService = Depends(get_service),
                  context: Optional[AccessContext] = Depends(get_context)):
    """Re-hash stored content and compare with the anchored hash"""
    try:
        result = service.verify_record(record_id, payload.requester_id, context=context)
    except MedProofError as e:
        logger.warning("Verification failed", record_id=record_id, error=e.message)
        raise _http_error(e)
    return result.model_dump(mode="json")


@app.post("/consent/requests", status_code=201)
def create_consent_request(payload: ConsentRequestIn,
                           service: MedProofService = Depends(get_service),
                           context: Optional[AccessContext] = Depends(get_context)):
    """Ask a subject for access to one of their records"""
    expiry_hours = payload.expiry_hours
    if expiry_hours is None:
        expiry_hours = service.config.default_expiry_hours
    try:
        request = service.create_consent_request(
            payload.subject_id,
            payload.requester_id,
            payload.requester_type,
            payload.record_id,
            expiry_hours,
            context=context,
            purpose=payload.purpose,
        )
    except MedProofError as e:
        raise _http_error(e)
    return request.model_dump(mode="json")


@app.post("/consent/requests/{request_id}/resolve")
def resolve_consent(request_id: str, payload: ResolveConsentIn,
                    service: MedProofService = Depends(get_service),
                    context: Optional[AccessContext] = Depends(get_context)):
    """Approve or deny a pending request"""
    try:
        request = service.resolve_consent(request_id, payload.decision, context=context)
    except MedProofError as e:
        logger.warning("Consent resolution failed", request_id=request_id, error=e.message)
        raise _http_error(e)
    return request.model_dump(mode="json")


@app.get("/subjects/{subject_id}/consent")
def list_consents(subject_id: str,
                  status: Optional[ConsentStatus] = None,
                  service: MedProofService = Depends(get_service)):
    """Consent requests of a subject with their effective status"""
    try:
        requests = service.list_consents(subject_id, status)
    except MedProofError as e:
        raise _http_error(e)

    items: List[Dict[str, Any]] = []
    for request in requests:
        item = request.model_dump(mode="json")
        item["effective_status"] = service.consent.effective_status(request).value
        items.append(item)
    return {"subject_id": subject_id, "requests": items}


@app.get("/audit")
def get_audit_trail(subject_id: Optional[str] = None,
                    record_id: Optional[str] = None,
                    accessor_id: Optional[str] = None,
                    action: Optional[AuditAction] = None,
                    limit: Optional[int] = Query(default=None, ge=1, le=10000),
                    service: MedProofService = Depends(get_service)):
    """Audit entries, most recent first"""
    audit_filter = AuditFilter(
        subject_id=subject_id,
        record_id=record_id,
        accessor_id=accessor_id,
        action=action,
    )
    entries = service.get_audit_trail(audit_filter, limit)
    return {"count": len(entries), "entries": [e.model_dump(mode="json") for e in entries]}


@app.get("/audit/stats/{subject_id}")
def get_audit_stats(subject_id: str, service: MedProofService = Depends(get_service)):
    """Per-subject audit totals"""
    try:
        return service.audit_stats(subject_id)
    except MedProofError as e:
        raise _http_error(e)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("medproof.main:app", host="0.0.0.0", port=8000, reload=settings.debug_mode)
