"""
api/routes/v1/vulnerabilities.py -- Vulnerability routes for the ThreatMap REST API.

Routes:
  GET    /vulnerabilities/statistics
  GET    /vulnerabilities                 -- paginated, highest CVSS first
  POST   /vulnerabilities                 -- severity derived from CVSS when omitted
  GET    /vulnerabilities/{vuln_id}
  PUT    /vulnerabilities/{vuln_id}       -- partial update
  PATCH  /vulnerabilities/{vuln_id}       -- same as PUT
  DELETE /vulnerabilities/{vuln_id}

A CVSS score of 7.0 or more on create raises an alert (9.0+ is critical).
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.limiter import limiter
from api.models import (
    SeverityEnum,
    VulnerabilityCreate,
    VulnerabilityListResponse,
    VulnerabilityResponse,
    VulnerabilityStatistics,
    VulnerabilityUpdate,
    VulnStatusEnum,
)
from auth.dependencies import get_current_user, require_writer
from auth.models import User
from posture import vulnerabilities as vuln_service

router = APIRouter(dependencies=[Depends(get_current_user)])


@limiter.limit("60/minute")
@router.get("/vulnerabilities/statistics", response_model=VulnerabilityStatistics)
def vulnerability_statistics(
    request: Request, current_user: User = Depends(get_current_user)
) -> VulnerabilityStatistics:
    return VulnerabilityStatistics(**vuln_service.vulnerability_statistics(request.app.state.store, current_user.id))


@limiter.limit("60/minute")
@router.get("/vulnerabilities", response_model=VulnerabilityListResponse)
def list_vulnerabilities(
    request: Request,
    severity: Optional[SeverityEnum] = None,
    status: Optional[VulnStatusEnum] = None,
    search: Optional[str] = Query(default=None, max_length=100),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    current_user: User = Depends(get_current_user),
) -> VulnerabilityListResponse:
    items, total = vuln_service.list_vulnerabilities(
        request.app.state.store,
        current_user.id,
        severity=severity.value if severity else None,
        status=status.value if status else None,
        search=search,
        limit=limit,
        offset=offset,
    )
    return VulnerabilityListResponse(
        items=[VulnerabilityResponse.from_entity(v) for v in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@limiter.limit("30/minute")
@router.post("/vulnerabilities", response_model=VulnerabilityResponse, status_code=201)
def create_vulnerability(
    request: Request,
    body: VulnerabilityCreate,
    current_user: User = Depends(require_writer),
) -> VulnerabilityResponse:
    vuln = vuln_service.create_vulnerability(
        request.app.state.store,
        current_user.id,
        body.model_dump(mode="json", exclude_none=True),
        notifier=request.app.state.notifier,
    )
    return VulnerabilityResponse.from_entity(vuln)


@limiter.limit("60/minute")
@router.get("/vulnerabilities/{vuln_id}", response_model=VulnerabilityResponse)
def get_vulnerability(
    request: Request, vuln_id: str, current_user: User = Depends(get_current_user)
) -> VulnerabilityResponse:
    return VulnerabilityResponse.from_entity(
        vuln_service.get_vulnerability(request.app.state.store, current_user.id, vuln_id)
    )


@limiter.limit("30/minute")
@router.put("/vulnerabilities/{vuln_id}", response_model=VulnerabilityResponse)
@router.patch("/vulnerabilities/{vuln_id}", response_model=VulnerabilityResponse)
def update_vulnerability(
    request: Request,
    vuln_id: str,
    body: VulnerabilityUpdate,
    current_user: User = Depends(require_writer),
) -> VulnerabilityResponse:
    vuln = vuln_service.update_vulnerability(
        request.app.state.store,
        current_user.id,
        vuln_id,
        body.model_dump(mode="json", exclude_unset=True),
    )
    return VulnerabilityResponse.from_entity(vuln)


@limiter.limit("30/minute")
@router.delete("/vulnerabilities/{vuln_id}", status_code=204)
def delete_vulnerability(request: Request, vuln_id: str, current_user: User = Depends(require_writer)) -> Response:
    vuln_service.delete_vulnerability(request.app.state.store, current_user.id, vuln_id)
    return Response(status_code=204)
