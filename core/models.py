"""
core/models.py -- Domain dataclasses for ThreatMap.

These are pure data containers with zero logic. Scoring lives in
core/scoring.py; mutation rules live in posture/; alert behaviour lives in
alerts/. Stores map DB rows to these classes, routes map them to Pydantic.

id is None before the record is written to the database. Entity ids are
UUID strings (the alert id format "{type}-{uuid}" depends on that).
Timestamps are ISO 8601 UTC strings set by the store.
"""

from dataclasses import dataclass, field
from typing import Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

SEVERITIES = ("critical", "high", "medium", "low")

RISK_CATEGORIES = ("operational", "technical", "compliance", "financial", "reputational", "strategic")
RISK_STATUSES = ("identified", "analyzing", "treating", "monitoring", "closed")
TREATMENT_STRATEGIES = ("mitigate", "transfer", "accept", "avoid")

THREAT_TYPES = (
    "malware",
    "phishing",
    "ransomware",
    "ddos",
    "sql_injection",
    "xss",
    "mitm",
    "insider_threat",
    "zero_day",
    "brute_force",
    "social_engineering",
    "other",
)
THREAT_STATUSES = ("active", "mitigated", "monitoring", "closed")

VULNERABILITY_STATUSES = ("open", "in_progress", "patched", "mitigated", "accepted")

ASSET_TYPES = (
    "server",
    "workstation",
    "network_device",
    "database",
    "application",
    "cloud_service",
    "mobile_device",
    "iot_device",
    "api",
    "web_service",
    "firewall",
    "load_balancer",
    "other",
)
ASSET_STATUSES = ("active", "inactive", "maintenance", "decommissioned")
EXPOSURE_LEVELS = ("public", "dmz", "internal", "isolated")

ALERT_STATUSES = ("new", "acknowledged", "in_progress", "resolved", "dismissed")
ALERT_TERMINAL_STATUSES = frozenset({"resolved", "dismissed"})
ALERT_SEVERITIES = ("critical", "high", "medium", "low", "info")
ALERT_TYPES = ("threat", "vulnerability", "risk", "system")
ALERT_ENTITY_TYPES = ("threat", "risk", "vulnerability", "asset")


@dataclass
class Risk:
    """A risk assessment. score and level are derived -- see core/scoring.py."""

    user_id: int
    name: str
    category: str
    probability: Optional[float] = None
    impact: Optional[int] = None
    score: Optional[float] = None
    level: Optional[str] = None
    status: str = "identified"
    description: Optional[str] = None
    treatment_strategy: Optional[str] = None
    treatment_plan: Optional[str] = None
    residual_probability: Optional[float] = None
    residual_impact: Optional[int] = None
    residual_score: Optional[float] = None
    threat_id: Optional[str] = None
    vulnerability_id: Optional[str] = None
    id: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Threat:
    """A threat record. severity is user input, not derived."""

    user_id: int
    name: str
    type: str
    severity: str
    status: str = "active"
    description: Optional[str] = None
    source: Optional[str] = None
    probability: Optional[float] = None
    impact: Optional[int] = None
    risk_score: Optional[float] = None
    mitigation_strategy: Optional[str] = None
    detected_at: str = ""
    mitigated_at: Optional[str] = None
    id: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Vulnerability:
    user_id: int
    name: str
    severity: str
    status: str = "open"  # "open" | "in_progress" | "patched" | "mitigated" | "accepted"
    description: Optional[str] = None
    cve_id: Optional[str] = None
    cvss_score: Optional[float] = None
    affected_systems: Optional[str] = None
    remediation: Optional[str] = None
    discovered_at: str = ""
    patched_at: Optional[str] = None
    id: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Asset:
    """An inventory node. position_x/position_y and connections feed the topology view."""

    user_id: int
    name: str
    type: str
    criticality: str = "medium"
    status: str = "active"
    exposure_level: str = "internal"
    is_public_facing: bool = False
    description: Optional[str] = None
    ip_address: Optional[str] = None
    hostname: Optional[str] = None
    os: Optional[str] = None
    location: Optional[str] = None
    owner: Optional[str] = None
    notes: Optional[str] = None
    position_x: Optional[float] = None
    position_y: Optional[float] = None
    ports_open: list[int] = field(default_factory=list)
    services: list[str] = field(default_factory=list)
    connections: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    id: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Alert:
    """Persisted user-interaction state for one entity's alert.

    Not the source of truth for whether the entity is currently severe --
    that is recomputed from live entity state on every listing. Absence of a
    row means "implicitly active, never actioned".
    """

    user_id: int
    related_entity_type: str  # "threat" | "risk" | "vulnerability" | "asset"
    related_entity_id: str
    title: str = "Alert"
    message: str = ""
    type: str = "system"
    severity: str = "info"
    status: str = "new"
    is_read: bool = False
    email_sent: bool = False
    acknowledged_by: Optional[int] = None
    acknowledged_at: Optional[str] = None
    resolved_at: Optional[str] = None
    id: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def key(self) -> str:
        return f"{self.related_entity_type}-{self.related_entity_id}"
