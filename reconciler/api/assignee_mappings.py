"""Assignee mapping management endpoints"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from typing import List
from pydantic import BaseModel
from datetime import datetime

from reconciler.models.base import get_db
from reconciler.models import AssigneeMapping

router = APIRouter(prefix="/api/assignee-mappings", tags=["assignee-mappings"])


class AssigneeMappingCreate(BaseModel):
    source_identifier: str
    target_identifier: str


class AssigneeMappingResponse(BaseModel):
    id: int
    source_identifier: str
    target_identifier: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


@router.get("/", response_model=List[AssigneeMappingResponse])
def list_assignee_mappings(db: Session = Depends(get_db)):
    """List all assignee mappings"""
    mappings = db.query(AssigneeMapping).all()
    return mappings


@router.post("/", response_model=AssigneeMappingResponse)
def create_assignee_mapping(mapping: AssigneeMappingCreate, db: Session = Depends(get_db)):
    """Create a new assignee mapping"""
    source_identifier = mapping.source_identifier.strip()
    target_identifier = mapping.target_identifier.strip()
    if not source_identifier or not target_identifier:
        raise HTTPException(status_code=400, detail="Both identifiers are required")

    # Lookups are case-insensitive, so a mapping may only be claimed once per side
    existing = db.query(AssigneeMapping).filter(
        or_(
            func.lower(AssigneeMapping.source_identifier) == source_identifier.lower(),
            func.lower(AssigneeMapping.target_identifier) == target_identifier.lower(),
        )
    ).first()
    if existing:
        raise HTTPException(status_code=400, detail="Assignee mapping already exists")

    db_mapping = AssigneeMapping(
        source_identifier=source_identifier,
        target_identifier=target_identifier,
    )
    db.add(db_mapping)
    db.commit()
    db.refresh(db_mapping)
    return db_mapping


@router.get("/{mapping_id}", response_model=AssigneeMappingResponse)
def get_assignee_mapping(mapping_id: int, db: Session = Depends(get_db)):
    """Get a specific assignee mapping"""
    mapping = db.query(AssigneeMapping).filter(AssigneeMapping.id == mapping_id).first()
    if not mapping:
        raise HTTPException(status_code=404, detail="Assignee mapping not found")
    return mapping


@router.delete("/{mapping_id}")
def delete_assignee_mapping(mapping_id: int, db: Session = Depends(get_db)):
    """Delete an assignee mapping"""
    mapping = db.query(AssigneeMapping).filter(AssigneeMapping.id == mapping_id).first()
    if not mapping:
        raise HTTPException(status_code=404, detail="Assignee mapping not found")

    db.delete(mapping)
    db.commit()
    return {"message": "Assignee mapping deleted successfully"}
