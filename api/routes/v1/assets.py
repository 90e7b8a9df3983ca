"""
api/routes/v1/assets.py -- Asset inventory routes for the ThreatMap REST API.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET    /assets/topology                 -- {nodes, links} graph payload
  GET    /assets/statistics               -- attack-surface summary
  GET    /assets                          -- paginated list with filters
  POST   /assets                          -- create asset
  GET    /assets/{asset_id}               -- asset detail
  PUT    /assets/{asset_id}               -- partial update
  PATCH  /assets/{asset_id}               -- same as PUT
  PATCH  /assets/{asset_id}/position      -- store topology coordinates
  DELETE /assets/{asset_id}

Topology:
  connections on each asset are ids of other assets of the same user. Links
  to unknown ids are dropped and each undirected pair is reported once, so
  a renderer can draw the payload as-is.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.limiter import limiter
from api.models import (
    AssetCreate,
    AssetListResponse,
    AssetResponse,
    AssetStatistics,
    AssetStatusEnum,
    AssetTypeEnum,
    AssetUpdate,
    ExposureEnum,
    PositionUpdate,
    SeverityEnum,
    TopologyResponse,
)
from auth.dependencies import get_current_user, require_writer
from auth.models import User
from posture import assets as asset_service

# All asset routes require authentication.
# Router-level dependency applies to every route registered on this router,
# so individual handlers don't each need to repeat Depends(get_current_user).
router = APIRouter(dependencies=[Depends(get_current_user)])


# ---------------------------------------------------------------------------
# GET /assets/topology and /assets/statistics (must be before /assets/{asset_id})
# ---------------------------------------------------------------------------


@limiter.limit("60/minute")
@router.get("/assets/topology", response_model=TopologyResponse)
def asset_topology(request: Request, current_user: User = Depends(get_current_user)) -> TopologyResponse:
    """Return the user's assets as graph nodes plus the links between them."""
    return TopologyResponse(**asset_service.topology(request.app.state.store, current_user.id))


@limiter.limit("60/minute")
@router.get("/assets/statistics", response_model=AssetStatistics)
def asset_statistics(request: Request, current_user: User = Depends(get_current_user)) -> AssetStatistics:
    return AssetStatistics(**asset_service.asset_statistics(request.app.state.store, current_user.id))


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


@limiter.limit("60/minute")
@router.get("/assets", response_model=AssetListResponse)
def list_assets(
    request: Request,
    type: Optional[AssetTypeEnum] = None,
    criticality: Optional[SeverityEnum] = None,
    exposure_level: Optional[ExposureEnum] = None,
    status: Optional[AssetStatusEnum] = None,
    search: Optional[str] = Query(default=None, max_length=100),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    current_user: User = Depends(get_current_user),
) -> AssetListResponse:
    items, total = asset_service.list_assets(
        request.app.state.store,
        current_user.id,
        type=type.value if type else None,
        criticality=criticality.value if criticality else None,
        exposure_level=exposure_level.value if exposure_level else None,
        status=status.value if status else None,
        search=search,
        limit=limit,
        offset=offset,
    )
    return AssetListResponse(
        items=[AssetResponse.from_entity(a) for a in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@limiter.limit("30/minute")
@router.post("/assets", response_model=AssetResponse, status_code=201)
def create_asset(
    request: Request,
    body: AssetCreate,
    current_user: User = Depends(require_writer),
) -> AssetResponse:
    """Register a new asset. criticality, status and exposure default to medium/active/internal."""
    asset = asset_service.create_asset(
        request.app.state.store,
        current_user.id,
        body.model_dump(mode="json", exclude_none=True),
    )
    return AssetResponse.from_entity(asset)


# ---------------------------------------------------------------------------
# Single asset
# ---------------------------------------------------------------------------


@limiter.limit("60/minute")
@router.get("/assets/{asset_id}", response_model=AssetResponse)
def get_asset(request: Request, asset_id: str, current_user: User = Depends(get_current_user)) -> AssetResponse:
    return AssetResponse.from_entity(asset_service.get_asset(request.app.state.store, current_user.id, asset_id))


@limiter.limit("30/minute")
@router.put("/assets/{asset_id}", response_model=AssetResponse)
@router.patch("/assets/{asset_id}", response_model=AssetResponse)
def update_asset(
    request: Request,
    asset_id: str,
    body: AssetUpdate,
    current_user: User = Depends(require_writer),
) -> AssetResponse:
    asset = asset_service.update_asset(
        request.app.state.store,
        current_user.id,
        asset_id,
        body.model_dump(mode="json", exclude_unset=True),
    )
    return AssetResponse.from_entity(asset)


@limiter.limit("120/minute")
@router.patch("/assets/{asset_id}/position", response_model=AssetResponse)
def move_asset(
    request: Request,
    asset_id: str,
    body: PositionUpdate,
    current_user: User = Depends(require_writer),
) -> AssetResponse:
    """Persist the node position after a drag in the topology view."""
    asset = asset_service.move_asset(
        request.app.state.store,
        current_user.id,
        asset_id,
        body.position_x,
        body.position_y,
    )
    return AssetResponse.from_entity(asset)


@limiter.limit("30/minute")
@router.delete("/assets/{asset_id}", status_code=204)
def delete_asset(request: Request, asset_id: str, current_user: User = Depends(require_writer)) -> Response:
    asset_service.delete_asset(request.app.state.store, current_user.id, asset_id)
    return Response(status_code=204)
