"""Sync Service - FastAPI application."""

import logging
import os
import sys
import uuid
from contextlib import asynccontextmanager
from typing import List, Optional
from urllib.parse import quote

from fastapi import (
    BackgroundTasks, Cookie, Depends, FastAPI, Header, HTTPException, Query, Request, Response, status
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel
from sqlalchemy import text

# Add shared module to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../'))
from shared.config import get_app_users, get_aws_config, get_journal_root, get_push_concurrency
from shared.db_operations import DatabaseOperations
from shared.exceptions import (
    AuthenticationError, ObjectNotFoundError, RemoteStoreError, SyncInProgressError
)
from shared.local_store import LocalStore
from shared.models import Attachment, Category, DEFAULT_CATEGORY, Entry, Report, is_valid_date_key, now_millis
from shared.payload_codec import is_inline_reference
from shared.session import SESSION_TTL, SessionService
from services.remote_store.adapter import RemoteAdapter
from services.remote_store.s3_client import S3Client
from services.sync_service.notifications import NotificationService
from services.sync_service.orchestrator import SyncOrchestrator

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session"

# Global instances
db_ops: Optional[DatabaseOperations] = None
session_service: Optional[SessionService] = None
remote_adapter: Optional[RemoteAdapter] = None
orchestrator: Optional[SyncOrchestrator] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    global db_ops, session_service, remote_adapter, orchestrator

    logger.info("Sync Service starting up...")

    db_ops = DatabaseOperations()
    db_ops.create_tables()
    logger.info("Local store database initialized")

    session_service = SessionService()
    logger.info("Session service initialized")

    aws_config = get_aws_config()
    s3_client = S3Client(
        bucket_name=aws_config["s3_bucket"],
        region=aws_config["region"],
        access_key_id=aws_config.get("access_key_id"),
        secret_access_key=aws_config.get("secret_access_key"),
        endpoint_url=aws_config.get("endpoint_url"),
        connect_timeout=aws_config["connect_timeout"],
        read_timeout=aws_config["read_timeout"]
    )
    remote_adapter = RemoteAdapter(s3_client, root_prefix=get_journal_root())
    logger.info(f"Remote store initialized - bucket: {aws_config['s3_bucket']}")

    orchestrator = SyncOrchestrator(
        remote=remote_adapter,
        storage=db_ops,
        notification_service=NotificationService(),
        push_concurrency=get_push_concurrency()
    )

    yield

    logger.info("Sync Service shutting down...")


# Create FastAPI application
app = FastAPI(
    title="Journal Sync Service",
    description="Offline-first journal storage and synchronization with the remote store",
    version="0.1.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handling middleware
@app.middleware("http")
async def error_handling_middleware(request: Request, call_next):
    """Global error handling middleware."""
    try:
        response = await call_next(request)
        return response
    except Exception as exc:
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "detail": str(exc)
            }
        )


def get_current_owner(
    session: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None)
) -> str:
    """Resolve the owner from the session cookie or a bearer token."""
    token = session
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()

    owner = session_service.current_owner(token) if token else None
    if not owner:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return owner


def get_local_store(owner: str = Depends(get_current_owner)) -> LocalStore:
    return orchestrator.local_store(owner)


def require_date(date: str) -> str:
    if not is_valid_date_key(date):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid date, expected YYYY-MM-DD"
        )
    return date


# Health check endpoint
@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Health check endpoint."""
    db_healthy = False
    try:
        with db_ops.get_session() as session:
            session.execute(text("SELECT 1"))
        db_healthy = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")

    remote_healthy = False
    try:
        await remote_adapter.s3.list_keys(remote_adapter.trash_key(""))
        remote_healthy = True
    except RemoteStoreError as e:
        logger.error(f"Remote store health check failed: {e}")

    overall_status = "healthy" if (db_healthy and remote_healthy) else "degraded"

    return {
        "status": overall_status,
        "service": "sync_service",
        "version": "0.1.0",
        "dependencies": {
            "database": "up" if db_healthy else "down",
            "remote_store": "up" if remote_healthy else "down"
        }
    }


@app.get("/", status_code=status.HTTP_200_OK)
async def root():
    """Root endpoint."""
    return {
        "service": "Journal Sync Service",
        "version": "0.1.0",
        "status": "running"
    }


# Request/Response models
class LoginRequest(BaseModel):
    """Request model for login."""
    username: str
    password: str


class AttachmentIn(BaseModel):
    """An attachment captured on the device, carried inline as a data URL."""
    name: str
    type: str = "application/octet-stream"
    url: str


class EntryCreateRequest(BaseModel):
    """Request model for writing a new entry."""
    date: str
    text: str = ""
    category: Category = DEFAULT_CATEGORY
    attachments: List[AttachmentIn] = []
    auto_sync: bool = False


class EntryUpdateRequest(BaseModel):
    """Request model for editing an entry."""
    text: Optional[str] = None
    category: Optional[Category] = None


class SyncRequest(BaseModel):
    """Request model for a sync pass."""
    date: str


class SyncResponse(BaseModel):
    """Response model for a sync pass."""
    owner: str
    date: str
    status: str
    message: str
    started_at: str
    completed_at: Optional[str] = None
    tombstones_cleared: int
    tombstones_pending: int
    pulled: int
    adopted: int
    pushed: int
    failed: int
    pull_error: Optional[str] = None
    last_error: Optional[str] = None


class ReportRequest(BaseModel):
    """Request model for caching a generated report."""
    start_date: str
    end_date: str
    summary: str
    key_achievements: List[str] = []
    suggestions: str = ""


# Authentication

@app.post("/auth/login", status_code=status.HTTP_200_OK)
async def login(request: LoginRequest, response: Response):
    """Check credentials against APP_USERS and open a session."""
    try:
        owner = SessionService.authenticate(request.username, request.password, get_app_users())
    except AuthenticationError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))

    token = session_service.issue(owner)
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=int(SESSION_TTL.total_seconds()),
        httponly=True,
        secure=True
    )
    logger.info(f"User {owner} logged in")
    return {"success": True, "token": token}


@app.post("/auth/logout", status_code=status.HTTP_200_OK)
async def logout(response: Response):
    response.delete_cookie(SESSION_COOKIE)
    return {"success": True}


# Entries

@app.get("/entries", status_code=status.HTTP_200_OK)
async def list_entries(
    date: Optional[str] = Query(None),
    store: LocalStore = Depends(get_local_store)
):
    """List entries, for one date (oldest first) or all of them."""
    if date is None:
        entries = store.get_all()
    else:
        entries = store.get_by_date(require_date(date))
    return {"entries": [entry.to_dict() for entry in entries], "count": len(entries)}


async def run_background_sync(owner: str, date_key: str):
    """Sync triggered after a local save; skipped if a pass is already running."""
    try:
        await orchestrator.run_sync(owner, date_key)
    except SyncInProgressError:
        logger.info(f"Auto-sync for {owner} skipped, a sync is already running")


@app.post("/entries", status_code=status.HTTP_201_CREATED)
async def create_entry(
    request: EntryCreateRequest,
    background_tasks: BackgroundTasks,
    owner: str = Depends(get_current_owner)
):
    """
    Write a new entry to the local store.

    The entry starts ``pending``; with ``auto_sync`` a sync pass for its
    date is scheduled in the background.
    """
    require_date(request.date)
    store = orchestrator.local_store(owner)

    for att in request.attachments:
        if not is_inline_reference(att.url):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Attachment {att.name} must be an inline data URL"
            )

    try:
        attachments = [
            Attachment.from_dict({
                "id": uuid.uuid4().hex[:8],
                "name": att.name,
                "type": att.type,
                "url": att.url,
            })
            for att in request.attachments
        ]
        entry = Entry.create(
            date_key=request.date,
            text=request.text,
            category=request.category,
            attachments=attachments,
            created_at=now_millis()
        )
        stored = store.add_entry(entry)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info(f"Created entry {stored.id} for {owner} on {stored.date_key}")

    if request.auto_sync:
        background_tasks.add_task(run_background_sync, owner, stored.date_key)

    return stored.to_dict()


@app.patch("/entries/{entry_id}", status_code=status.HTTP_200_OK)
async def update_entry(
    entry_id: str,
    request: EntryUpdateRequest,
    store: LocalStore = Depends(get_local_store)
):
    """Edit an entry locally; it goes back to pending."""
    try:
        edited = store.edit_entry(entry_id, text=request.text, category=request.category)
    except KeyError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Entry {entry_id} not found"
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return edited.to_dict()


@app.delete("/entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_entry(entry_id: str, store: LocalStore = Depends(get_local_store)):
    """
    Delete an entry locally. The remote copy is trashed on the next sync.

    Unknown ids are rejected before anything is tombstoned.
    """
    if store.get(entry_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Entry {entry_id} not found"
        )
    store.delete(entry_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Sync

@app.post("/sync", response_model=SyncResponse, status_code=status.HTTP_200_OK)
async def execute_sync(request: SyncRequest, owner: str = Depends(get_current_owner)):
    """
    Run one sync pass for a date.

    Deletes tombstoned entries remotely, pulls and merges remote entries,
    then pushes pending local entries. Item failures are reported in the
    summary; only one pass per owner may run at a time.
    """
    require_date(request.date)
    logger.info(f"Received sync request for {owner} on {request.date}")

    try:
        summary = await orchestrator.run_sync(owner, request.date)
    except SyncInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return SyncResponse(**summary.to_dict())


# Reports

@app.get("/reports", status_code=status.HTTP_200_OK)
async def get_report(
    start: str = Query(...),
    end: str = Query(...),
    store: LocalStore = Depends(get_local_store)
):
    """Return the cached report for a date range."""
    report = store.latest_report(start, end)
    if report is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No report for {start}..{end}"
        )
    return report.to_dict()


@app.post("/reports", status_code=status.HTTP_201_CREATED)
async def save_report(request: ReportRequest, store: LocalStore = Depends(get_local_store)):
    """Cache a report, replacing the older one for the same range."""
    require_date(request.start_date)
    require_date(request.end_date)

    report = Report(
        id=uuid.uuid4().hex,
        start_date=request.start_date,
        end_date=request.end_date,
        created_at=now_millis(),
        summary=request.summary,
        key_achievements=request.key_achievements,
        suggestions=request.suggestions
    )
    store.save_report(report)
    return report.to_dict()


# Attachments

@app.get("/attachments/download")
async def download_attachment(
    key: str = Query(...),
    filename: Optional[str] = Query(None),
    content_type: Optional[str] = Query(None, alias="contentType"),
    owner: str = Depends(get_current_owner)
):
    """Stream an uploaded attachment back to the client as a download."""
    if not remote_adapter.owns_key(owner, key):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    try:
        obj = await remote_adapter.open_attachment(key)
    except ObjectNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attachment not found")
    except RemoteStoreError as e:
        logger.error(f"Proxy download of {key} failed: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Download failed: {e}")

    headers = {
        "Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename or 'download', safe='')}"
    }
    if obj.get("content_length") is not None:
        headers["Content-Length"] = str(obj["content_length"])

    return StreamingResponse(
        obj["body"].iter_chunks(),
        media_type=content_type or obj.get("content_type") or "application/octet-stream",
        headers=headers
    )


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("SYNC_SERVICE_PORT", 8005))
    uvicorn.run(app, host="0.0.0.0", port=port)
