"""
api/routes/v1/alerts.py -- Alert routes for the ThreatMap REST API.

Routes:
  GET   /alerts                           -- synthesized alert list (?status=active|resolved|dismissed|all)
  GET   /alerts/statistics                -- currently-alerting counts per severity and entity type
  PATCH /alerts/{alert_id}/read           -- mark read
  PATCH /alerts/{alert_id}/acknowledge    -- acknowledge (records who and when)
  PATCH /alerts/{alert_id}/resolve        -- resolve; downgrades the entity
  PATCH /alerts/{alert_id}/dismiss        -- dismiss; moves the entity to monitoring/accepted

alert_id is the synthesized "<entity type>-<entity id>" key returned by
GET /alerts, not a database row id. read and acknowledge only touch the
alert row and are open to any authenticated user; resolve and dismiss also
change the underlying entity and require admin or analyst.

Listing has a side effect: every alert row for an entity that is currently
severe is deleted, whatever its status, so that alert comes back active and unread.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from alerts import lifecycle
from alerts.synthesizer import get_alert_statistics, list_alerts
from api.limiter import limiter
from api.models import AlertListResponse, AlertRowResponse, AlertStatistics
from auth.dependencies import get_current_user, require_writer
from auth.models import User

router = APIRouter(dependencies=[Depends(get_current_user)])


@limiter.limit("60/minute")
@router.get("/alerts", response_model=AlertListResponse)
def get_alerts(
    request: Request,
    status: Optional[str] = Query(default=None, max_length=20),
    current_user: User = Depends(get_current_user),
) -> AlertListResponse:
    """List alerts for the current user. Unknown status values behave like "all"."""
    return AlertListResponse(**list_alerts(request.app.state.store, current_user.id, status_filter=status))


@limiter.limit("60/minute")
@router.get("/alerts/statistics", response_model=AlertStatistics)
def alert_statistics(request: Request, current_user: User = Depends(get_current_user)) -> AlertStatistics:
    return AlertStatistics(**get_alert_statistics(request.app.state.store, current_user.id))


@limiter.limit("60/minute")
@router.patch("/alerts/{alert_id}/read", response_model=AlertRowResponse)
def mark_alert_read(
    request: Request, alert_id: str, current_user: User = Depends(get_current_user)
) -> AlertRowResponse:
    return AlertRowResponse.from_entity(lifecycle.mark_read(request.app.state.store, current_user.id, alert_id))


@limiter.limit("60/minute")
@router.patch("/alerts/{alert_id}/acknowledge", response_model=AlertRowResponse)
def acknowledge_alert(
    request: Request, alert_id: str, current_user: User = Depends(get_current_user)
) -> AlertRowResponse:
    alert = lifecycle.acknowledge(request.app.state.store, current_user.id, alert_id, acknowledged_by=current_user.id)
    return AlertRowResponse.from_entity(alert)


@limiter.limit("60/minute")
@router.patch("/alerts/{alert_id}/resolve", response_model=AlertRowResponse)
def resolve_alert(request: Request, alert_id: str, current_user: User = Depends(require_writer)) -> AlertRowResponse:
    """Resolve the alert and downgrade the entity (risk closed at 2.0, threat mitigated, vuln patched)."""
    return AlertRowResponse.from_entity(lifecycle.resolve(request.app.state.store, current_user.id, alert_id))


@limiter.limit("60/minute")
@router.patch("/alerts/{alert_id}/dismiss", response_model=AlertRowResponse)
def dismiss_alert(request: Request, alert_id: str, current_user: User = Depends(require_writer)) -> AlertRowResponse:
    return AlertRowResponse.from_entity(lifecycle.dismiss(request.app.state.store, current_user.id, alert_id))
