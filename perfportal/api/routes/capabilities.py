from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from perfportal.api.deps import get_db
from perfportal.db import models
from perfportal.services.baseline import BaselineThresholds

router = APIRouter(prefix="/capabilities", tags=["capabilities"])
logger = logging.getLogger(__name__)


class BaselineIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    p95_max_ms: Optional[float] = Field(default=None, alias="p95MaxMs")
    avg_max_ms: Optional[float] = Field(default=None, alias="avgMaxMs")
    p90_max_ms: Optional[float] = Field(default=None, alias="p90MaxMs")
    throughput_min: Optional[float] = Field(default=None, alias="throughputMin")


class CapabilityCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    test_objective: Optional[str] = None
    test_scope: Optional[str] = None
    environment_details: Optional[str] = None
    acceptance_criteria: Optional[dict[str, Any]] = None
    baseline: Optional[BaselineIn] = None
    is_active: bool = True


class CapabilityUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    test_objective: Optional[str] = None
    test_scope: Optional[str] = None
    environment_details: Optional[str] = None
    acceptance_criteria: Optional[dict[str, Any]] = None
    baseline: Optional[BaselineIn] = None
    is_active: Optional[bool] = None


class TestCaseCreate(BaseModel):
    test_case_name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    priority: Optional[str] = None


class TestCaseOut(BaseModel):
    id: UUID
    capability_id: UUID
    test_case_name: str
    description: Optional[str]
    priority: Optional[str]


class CapabilityOut(BaseModel):
    id: UUID
    name: str
    description: Optional[str]
    test_objective: Optional[str]
    test_scope: Optional[str]
    environment_details: Optional[str]
    acceptance_criteria: Optional[dict[str, Any]]
    baseline: dict[str, Optional[float]]
    is_active: bool
    test_cases: list[TestCaseOut] = []
    created_at: datetime
    updated_at: datetime


def _merge_baseline(
    acceptance_criteria: Optional[dict[str, Any]], baseline: Optional[BaselineIn]
) -> Optional[dict[str, Any]]:
    if baseline is None:
        return acceptance_criteria
    criteria = dict(acceptance_criteria or {})
    criteria["baseline"] = baseline.model_dump(by_alias=True, exclude_none=True)
    return criteria


def _test_cases_for(session: Session, capability_id: UUID) -> list[models.CapabilityTestCase]:
    statement = (
        select(models.CapabilityTestCase)
        .where(models.CapabilityTestCase.capability_id == capability_id)
        .order_by(models.CapabilityTestCase.created_at)
    )
    return list(session.exec(statement).all())


def _to_out(session: Session, capability: models.Capability) -> CapabilityOut:
    thresholds = BaselineThresholds.from_acceptance_criteria(capability.acceptance_criteria)
    return CapabilityOut(
        id=capability.id,
        name=capability.name,
        description=capability.description,
        test_objective=capability.test_objective,
        test_scope=capability.test_scope,
        environment_details=capability.environment_details,
        acceptance_criteria=capability.acceptance_criteria,
        baseline=thresholds.to_acceptance_criteria(),
        is_active=capability.is_active,
        test_cases=[
            TestCaseOut(
                id=case.id,
                capability_id=case.capability_id,
                test_case_name=case.test_case_name,
                description=case.description,
                priority=case.priority,
            )
            for case in _test_cases_for(session, capability.id)
        ],
        created_at=capability.created_at,
        updated_at=capability.updated_at,
    )


def _get_capability_or_404(session: Session, capability_id: UUID) -> models.Capability:
    capability = session.get(models.Capability, capability_id)
    if not capability:
        raise HTTPException(status_code=404, detail="Capability not found")
    return capability


def _name_taken(session: Session, name: str, *, exclude: Optional[UUID] = None) -> bool:
    statement = select(models.Capability).where(models.Capability.name == name)
    if exclude is not None:
        statement = statement.where(models.Capability.id != exclude)
    return session.exec(statement).first() is not None


@router.get("", response_model=list[CapabilityOut], summary="List capabilities")
def list_capabilities(
    session: Session = Depends(get_db),
    include_inactive: bool = Query(default=False),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> list[CapabilityOut]:
    statement = select(models.Capability)
    if not include_inactive:
        statement = statement.where(models.Capability.is_active == True)  # noqa: E712
    statement = (
        statement.order_by(func.lower(models.Capability.name)).offset(offset).limit(limit)
    )
    return [_to_out(session, capability) for capability in session.exec(statement).all()]


@router.post("", response_model=CapabilityOut, status_code=201, summary="Create a capability")
def create_capability(
    payload: CapabilityCreate,
    session: Session = Depends(get_db),
) -> CapabilityOut:
    name = payload.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Capability name must not be blank")
    if _name_taken(session, name):
        raise HTTPException(status_code=409, detail=f"Capability '{name}' already exists")

    capability = models.Capability(
        name=name,
        description=payload.description,
        test_objective=payload.test_objective,
        test_scope=payload.test_scope,
        environment_details=payload.environment_details,
        acceptance_criteria=_merge_baseline(payload.acceptance_criteria, payload.baseline),
        is_active=payload.is_active,
    )
    session.add(capability)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise HTTPException(status_code=409, detail=f"Capability '{name}' already exists") from exc
    session.refresh(capability)
    logger.info("Created capability %s (%s)", capability.name, capability.id)
    return _to_out(session, capability)


@router.get("/{capability_id}", response_model=CapabilityOut, summary="Get capability detail")
def get_capability(capability_id: UUID, session: Session = Depends(get_db)) -> CapabilityOut:
    return _to_out(session, _get_capability_or_404(session, capability_id))


@router.patch("/{capability_id}", response_model=CapabilityOut, summary="Update a capability")
def update_capability(
    capability_id: UUID,
    payload: CapabilityUpdate,
    session: Session = Depends(get_db),
) -> CapabilityOut:
    capability = _get_capability_or_404(session, capability_id)
    changes = payload.model_dump(exclude_unset=True, exclude={"baseline"})

    if "name" in changes:
        name = (changes["name"] or "").strip()
        if not name:
            raise HTTPException(status_code=400, detail="Capability name must not be blank")
        if _name_taken(session, name, exclude=capability.id):
            raise HTTPException(status_code=409, detail=f"Capability '{name}' already exists")
        changes["name"] = name

    for field_name, value in changes.items():
        setattr(capability, field_name, value)
    if "baseline" in payload.model_fields_set:
        capability.acceptance_criteria = _merge_baseline(
            capability.acceptance_criteria, payload.baseline or BaselineIn()
        )
    capability.updated_at = models.utc_now()
    session.add(capability)
    session.commit()
    session.refresh(capability)
    return _to_out(session, capability)


@router.post(
    "/{capability_id}/test-cases",
    response_model=TestCaseOut,
    status_code=201,
    summary="Add a test case to a capability",
)
def add_test_case(
    capability_id: UUID,
    payload: TestCaseCreate,
    session: Session = Depends(get_db),
) -> TestCaseOut:
    capability = _get_capability_or_404(session, capability_id)
    name = payload.test_case_name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Test case name must not be blank")

    existing = {case.test_case_name.strip().lower() for case in _test_cases_for(session, capability.id)}
    if name.lower() in existing:
        raise HTTPException(status_code=409, detail=f"Test case '{name}' already exists")

    case = models.CapabilityTestCase(
        capability_id=capability.id,
        test_case_name=name,
        description=payload.description,
        priority=payload.priority,
    )
    session.add(case)
    session.commit()
    session.refresh(case)
    return TestCaseOut(
        id=case.id,
        capability_id=case.capability_id,
        test_case_name=case.test_case_name,
        description=case.description,
        priority=case.priority,
    )
