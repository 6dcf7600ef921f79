"""Sync management endpoints"""
from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional
from pydantic import BaseModel
from datetime import datetime

from reconciler.config import settings
from reconciler.core.errors import ConfigValidationError
from reconciler.models.base import get_db
from reconciler.models import Conflict, LedgerEntryRow, SyncLog, SyncState
from reconciler.models.sync_log import SyncStatus
from reconciler.services.sync_runner import SyncInProgressError, SyncRunner

router = APIRouter(prefix="/api/sync", tags=["sync"])


class SyncLogResponse(BaseModel):
    id: int
    status: str
    direction: Optional[str] = None
    source_to_target: int = 0
    target_to_source: int = 0
    conflicts: int = 0
    errors: int = 0
    skipped: int = 0
    message: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ConflictResponse(BaseModel):
    id: int
    sync_log_id: Optional[int] = None
    source_issue_id: str
    target_issue_id: str
    fields: str
    description: str
    source_data: Optional[str] = None
    target_data: Optional[str] = None
    last_sync_fingerprint: Optional[str] = None
    resolved: bool
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class LedgerEntryResponse(BaseModel):
    id: int
    tracking_key: str
    source_id: str
    target_id: str
    last_fingerprint: Optional[str] = None
    is_derived_item: bool
    updated_at: datetime

    class Config:
        from_attributes = True


@router.post("/trigger")
def trigger_sync(db: Session = Depends(get_db)):
    """Manually trigger a reconciliation run"""
    try:
        return SyncRunner(db).run()
    except SyncInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ConfigValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/status")
def sync_status(db: Session = Depends(get_db)):
    """Last sync time, last run outcome and ledger size"""
    state = db.query(SyncState).first()
    last_log = db.query(SyncLog).order_by(SyncLog.created_at.desc(), SyncLog.id.desc()).first()
    return {
        "source": settings.source_name,
        "target": settings.target_name,
        "direction": settings.sync_direction,
        "last_sync_at": state.last_sync_at if state else None,
        "last_status": last_log.status.value if last_log else None,
        "ledger_entries": db.query(LedgerEntryRow).count(),
        "open_conflicts": db.query(Conflict).filter(Conflict.resolved == False).count(),
    }


@router.get("/logs", response_model=List[SyncLogResponse])
def list_sync_logs(limit: int = 100, status: Optional[str] = None, db: Session = Depends(get_db)):
    """List sync logs"""
    query = db.query(SyncLog).order_by(SyncLog.created_at.desc(), SyncLog.id.desc())
    if status:
        try:
            query = query.filter(SyncLog.status == SyncStatus(status.lower()))
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown sync status '{status}'")
    logs = query.limit(limit).all()
    return logs


@router.get("/conflicts", response_model=List[ConflictResponse])
def list_conflicts(resolved: bool = None, db: Session = Depends(get_db)):
    """List conflicts"""
    query = db.query(Conflict).order_by(Conflict.created_at.desc(), Conflict.id.desc())
    if resolved is not None:
        query = query.filter(Conflict.resolved == resolved)
    conflicts = query.all()
    return conflicts


@router.post("/conflicts/{conflict_id}/resolve", response_model=ConflictResponse)
def resolve_conflict(
    conflict_id: int,
    resolution_notes: Optional[str] = Body(None, embed=True),
    db: Session = Depends(get_db),
):
    """Mark a conflict as resolved"""
    conflict = db.query(Conflict).filter(Conflict.id == conflict_id).first()
    if not conflict:
        raise HTTPException(status_code=404, detail="Conflict not found")

    conflict.resolved = True
    conflict.resolved_at = datetime.utcnow()
    conflict.resolution_notes = resolution_notes
    db.commit()
    db.refresh(conflict)
    return conflict


@router.get("/ledger", response_model=List[LedgerEntryResponse])
def list_ledger_entries(db: Session = Depends(get_db)):
    """List ledger entries (linked issue pairs)"""
    entries = db.query(LedgerEntryRow).order_by(LedgerEntryRow.updated_at.desc()).all()
    return entries
