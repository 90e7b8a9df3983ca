"""
api/routes/v1/risks.py -- Risk register routes for the ThreatMap REST API.

Routes (static paths are registered before /risks/{risk_id}):
  POST   /risks/calculate     -- stateless score preview (+ optional residual)
  GET    /risks/matrix        -- probability x impact points + per-level counts
  GET    /risks/prioritized   -- top N open risks by score
  GET    /risks               -- paginated list, filters: level, category, status
  POST   /risks               -- create (fires an alert for critical/high)
  GET    /risks/{risk_id}     -- detail
  PUT    /risks/{risk_id}     -- partial update, score/level recomputed
  PATCH  /risks/{risk_id}     -- same as PUT
  DELETE /risks/{risk_id}     -- delete

Score and level are never accepted from the client; posture/risks.py derives
them from probability and impact on every write.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.limiter import limiter
from api.models import (
    CalculateRequest,
    CalculateResponse,
    PrioritizedRisk,
    RiskCategoryEnum,
    RiskCreate,
    RiskListResponse,
    RiskMatrixResponse,
    RiskResponse,
    RiskStatusEnum,
    RiskUpdate,
    SeverityEnum,
)
from auth.dependencies import get_current_user, require_writer
from auth.models import User
from core import scoring
from posture import risks as risk_service
from posture.store import PostureStore

# Auth policy: every route requires auth; mutations also require admin or analyst.
router = APIRouter(dependencies=[Depends(get_current_user)])


@limiter.limit("60/minute")
@router.post("/risks/calculate", response_model=CalculateResponse)
def calculate_risk(request: Request, body: CalculateRequest) -> CalculateResponse:
    """Score a (probability, impact) pair without storing anything."""
    result = risk_service.calculate(body.model_dump(include={"probability", "impact"}))
    if body.reduction_factor is not None:
        residual = scoring.residual_risk(result["probability"], result["impact"], body.reduction_factor)
        result["residual"] = residual["residual"]
    return CalculateResponse(**result)


@limiter.limit("60/minute")
@router.get("/risks/matrix", response_model=RiskMatrixResponse)
def risk_matrix(request: Request, current_user: User = Depends(get_current_user)) -> RiskMatrixResponse:
    store: PostureStore = request.app.state.store
    return RiskMatrixResponse(**scoring.risk_matrix(store.find("risk", user_id=current_user.id)))


@limiter.limit("60/minute")
@router.get("/risks/prioritized", response_model=list[PrioritizedRisk])
def prioritized(
    request: Request,
    limit: int = Query(default=10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
) -> list[PrioritizedRisk]:
    store: PostureStore = request.app.state.store
    ranked = risk_service.prioritized_risks(store, current_user.id, limit=limit)
    return [PrioritizedRisk(priority=rank, risk=RiskResponse.from_entity(r)) for rank, r in ranked]


@limiter.limit("60/minute")
@router.get("/risks", response_model=RiskListResponse)
def list_risks(
    request: Request,
    level: Optional[SeverityEnum] = None,
    category: Optional[RiskCategoryEnum] = None,
    status: Optional[RiskStatusEnum] = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    current_user: User = Depends(get_current_user),
) -> RiskListResponse:
    store: PostureStore = request.app.state.store
    items, total = risk_service.list_risks(
        store,
        current_user.id,
        level=level.value if level else None,
        category=category.value if category else None,
        status=status.value if status else None,
        limit=limit,
        offset=offset,
    )
    return RiskListResponse(
        items=[RiskResponse.from_entity(r) for r in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@limiter.limit("30/minute")
@router.post("/risks", response_model=RiskResponse, status_code=201)
def create_risk(
    request: Request,
    body: RiskCreate,
    current_user: User = Depends(require_writer),
) -> RiskResponse:
    """Create a risk. score and level come back derived."""
    risk = risk_service.create_risk(
        request.app.state.store,
        current_user.id,
        body.model_dump(mode="json", exclude_none=True),
        notifier=request.app.state.notifier,
    )
    return RiskResponse.from_entity(risk)


@limiter.limit("60/minute")
@router.get("/risks/{risk_id}", response_model=RiskResponse)
def get_risk(request: Request, risk_id: str, current_user: User = Depends(get_current_user)) -> RiskResponse:
    return RiskResponse.from_entity(risk_service.get_risk(request.app.state.store, current_user.id, risk_id))


@limiter.limit("30/minute")
@router.put("/risks/{risk_id}", response_model=RiskResponse)
@router.patch("/risks/{risk_id}", response_model=RiskResponse)
def update_risk(
    request: Request,
    risk_id: str,
    body: RiskUpdate,
    current_user: User = Depends(require_writer),
) -> RiskResponse:
    """Apply the fields present in the body; score and level are always recomputed."""
    risk = risk_service.update_risk(
        request.app.state.store,
        current_user.id,
        risk_id,
        body.model_dump(mode="json", exclude_unset=True),
    )
    return RiskResponse.from_entity(risk)


@limiter.limit("30/minute")
@router.delete("/risks/{risk_id}", status_code=204)
def delete_risk(request: Request, risk_id: str, current_user: User = Depends(require_writer)) -> Response:
    risk_service.delete_risk(request.app.state.store, current_user.id, risk_id)
    return Response(status_code=204)
