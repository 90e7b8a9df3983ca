"""
api/routes/v1/threats.py -- Threat tracking routes for the ThreatMap REST API.

Routes:
  GET    /threats/statistics  -- totals by severity, active, mitigated
  GET    /threats             -- paginated list, filters: severity, type, status, search
  POST   /threats             -- create (fires an alert for critical/high)
  GET    /threats/{threat_id}
  PUT    /threats/{threat_id} -- partial update
  PATCH  /threats/{threat_id} -- same as PUT
  DELETE /threats/{threat_id}
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.limiter import limiter
from api.models import (
    SeverityEnum,
    ThreatCreate,
    ThreatListResponse,
    ThreatResponse,
    ThreatStatistics,
    ThreatStatusEnum,
    ThreatTypeEnum,
    ThreatUpdate,
)
from auth.dependencies import get_current_user, require_writer
from auth.models import User
from posture import threats as threat_service

router = APIRouter(dependencies=[Depends(get_current_user)])


@limiter.limit("60/minute")
@router.get("/threats/statistics", response_model=ThreatStatistics)
def threat_statistics(request: Request, current_user: User = Depends(get_current_user)) -> ThreatStatistics:
    return ThreatStatistics(**threat_service.threat_statistics(request.app.state.store, current_user.id))


@limiter.limit("60/minute")
@router.get("/threats", response_model=ThreatListResponse)
def list_threats(
    request: Request,
    severity: Optional[SeverityEnum] = None,
    type: Optional[ThreatTypeEnum] = None,
    status: Optional[ThreatStatusEnum] = None,
    search: Optional[str] = Query(default=None, max_length=100),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    current_user: User = Depends(get_current_user),
) -> ThreatListResponse:
    items, total = threat_service.list_threats(
        request.app.state.store,
        current_user.id,
        severity=severity.value if severity else None,
        type=type.value if type else None,
        status=status.value if status else None,
        search=search,
        limit=limit,
        offset=offset,
    )
    return ThreatListResponse(
        items=[ThreatResponse.from_entity(t) for t in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@limiter.limit("30/minute")
@router.post("/threats", response_model=ThreatResponse, status_code=201)
def create_threat(
    request: Request,
    body: ThreatCreate,
    current_user: User = Depends(require_writer),
) -> ThreatResponse:
    """Record a threat. risk_score is derived when probability and impact are both given."""
    threat = threat_service.create_threat(
        request.app.state.store,
        current_user.id,
        body.model_dump(mode="json", exclude_none=True),
        notifier=request.app.state.notifier,
    )
    return ThreatResponse.from_entity(threat)


@limiter.limit("60/minute")
@router.get("/threats/{threat_id}", response_model=ThreatResponse)
def get_threat(request: Request, threat_id: str, current_user: User = Depends(get_current_user)) -> ThreatResponse:
    return ThreatResponse.from_entity(threat_service.get_threat(request.app.state.store, current_user.id, threat_id))


@limiter.limit("30/minute")
@router.put("/threats/{threat_id}", response_model=ThreatResponse)
@router.patch("/threats/{threat_id}", response_model=ThreatResponse)
def update_threat(
    request: Request,
    threat_id: str,
    body: ThreatUpdate,
    current_user: User = Depends(require_writer),
) -> ThreatResponse:
    threat = threat_service.update_threat(
        request.app.state.store,
        current_user.id,
        threat_id,
        body.model_dump(mode="json", exclude_unset=True),
    )
    return ThreatResponse.from_entity(threat)


@limiter.limit("30/minute")
@router.delete("/threats/{threat_id}", status_code=204)
def delete_threat(request: Request, threat_id: str, current_user: User = Depends(require_writer)) -> Response:
    threat_service.delete_threat(request.app.state.store, current_user.id, threat_id)
    return Response(status_code=204)
