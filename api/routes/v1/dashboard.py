"""
api/routes/v1/dashboard.py -- Aggregated posture metrics for the current user.

Returns a single payload suitable for driving dashboard widgets:
  - Threat, vulnerability, risk and asset counts by severity (risks by level,
    assets by criticality)
  - Aggregate risk-score metrics
  - Currently-alerting counts (same numbers as GET /alerts/statistics)
  - The top five open risks

This is a read-only aggregate route -- no mutations here, and unlike
GET /alerts it never reconciles alert rows.
"""

from fastapi import APIRouter, Depends, Request

from alerts.synthesizer import get_alert_statistics
from api.limiter import limiter
from api.models import (
    AlertStatistics,
    DashboardResponse,
    EntityCounts,
    PrioritizedRisk,
    RiskMetrics,
    RiskResponse,
)
from auth.dependencies import get_current_user
from auth.models import User
from core.models import SEVERITIES
from core.scoring import aggregate_metrics
from posture.risks import prioritized_risks
from posture.store import PostureStore

# Auth policy:
# - GET /api/v1/dashboard: requires auth -- posture data is per user
router = APIRouter(dependencies=[Depends(get_current_user)])

_TOP_RISKS = 5


def _counts(store: PostureStore, kind: str, user_id: int, column: str) -> EntityCounts:
    return EntityCounts(
        total=store.count(kind, user_id=user_id),
        by_severity={s: store.count(kind, user_id=user_id, **{column: s}) for s in SEVERITIES},
    )


@limiter.limit("60/minute")
@router.get("/dashboard", response_model=DashboardResponse)
def get_dashboard(request: Request, current_user: User = Depends(get_current_user)) -> DashboardResponse:
    """Return the posture overview for the authenticated user."""
    store: PostureStore = request.app.state.store
    uid = current_user.id

    risks = store.find("risk", user_id=uid)
    top = prioritized_risks(store, uid, limit=_TOP_RISKS)

    return DashboardResponse(
        threats=_counts(store, "threat", uid, "severity"),
        vulnerabilities=_counts(store, "vulnerability", uid, "severity"),
        risks=_counts(store, "risk", uid, "level"),
        assets=_counts(store, "asset", uid, "criticality"),
        risk_metrics=RiskMetrics(**aggregate_metrics(risks)),
        alerts=AlertStatistics(**get_alert_statistics(store, uid)),
        top_risks=[PrioritizedRisk(priority=rank, risk=RiskResponse.from_entity(r)) for rank, r in top],
    )
