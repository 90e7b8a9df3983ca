"""
API request and response models for ThreatMap REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py, which
own the internal domain representation. Route handlers map between the two.

Numeric inputs (probability, impact, cvss_score, coordinates) are accepted as
numbers or numeric strings and handed to posture/ unchanged; the mutation
guards there are the one place where coercion and range checks happen.

Separation of concerns: core/ models = domain truth; api/ models = API contract.
"""

from dataclasses import asdict
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from core.models import Alert, Asset, Risk, Threat, Vulnerability

# A probability / impact / score as sent by a form or a script.
Numeric = Optional[Union[int, float, str]]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SeverityEnum(str, Enum):
    critical = "critical"
    high = "high"
    medium = "medium"
    low = "low"


class RiskCategoryEnum(str, Enum):
    operational = "operational"
    technical = "technical"
    compliance = "compliance"
    financial = "financial"
    reputational = "reputational"
    strategic = "strategic"


class RiskStatusEnum(str, Enum):
    identified = "identified"
    analyzing = "analyzing"
    treating = "treating"
    monitoring = "monitoring"
    closed = "closed"


class TreatmentEnum(str, Enum):
    mitigate = "mitigate"
    transfer = "transfer"
    accept = "accept"
    avoid = "avoid"


class ThreatTypeEnum(str, Enum):
    malware = "malware"
    phishing = "phishing"
    ransomware = "ransomware"
    ddos = "ddos"
    sql_injection = "sql_injection"
    xss = "xss"
    mitm = "mitm"
    insider_threat = "insider_threat"
    zero_day = "zero_day"
    brute_force = "brute_force"
    social_engineering = "social_engineering"
    other = "other"


class ThreatStatusEnum(str, Enum):
    active = "active"
    mitigated = "mitigated"
    monitoring = "monitoring"
    closed = "closed"


class VulnStatusEnum(str, Enum):
    open = "open"
    in_progress = "in_progress"
    patched = "patched"
    mitigated = "mitigated"
    accepted = "accepted"


class AssetTypeEnum(str, Enum):
    server = "server"
    workstation = "workstation"
    network_device = "network_device"
    database = "database"
    application = "application"
    cloud_service = "cloud_service"
    mobile_device = "mobile_device"
    iot_device = "iot_device"
    api = "api"
    web_service = "web_service"
    firewall = "firewall"
    load_balancer = "load_balancer"
    other = "other"


class AssetStatusEnum(str, Enum):
    active = "active"
    inactive = "inactive"
    maintenance = "maintenance"
    decommissioned = "decommissioned"


class ExposureEnum(str, Enum):
    public = "public"
    dmz = "dmz"
    internal = "internal"
    isolated = "isolated"


class RoleEnum(str, Enum):
    admin = "admin"
    analyst = "analyst"
    viewer = "viewer"


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class FieldError(BaseModel):
    """One field-level validation message."""

    model_config = ConfigDict(frozen=True)

    field: str
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[list[FieldError]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


# ---------------------------------------------------------------------------
# Risks
# ---------------------------------------------------------------------------


class RiskCreate(BaseModel):
    """Request body for POST /api/v1/risks."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=200)
    category: RiskCategoryEnum
    probability: Numeric
    impact: Numeric
    description: Optional[str] = Field(default=None, max_length=5000)
    status: Optional[RiskStatusEnum] = None
    treatment_strategy: Optional[TreatmentEnum] = None
    treatment_plan: Optional[str] = Field(default=None, max_length=5000)
    residual_probability: Numeric = None
    residual_impact: Numeric = None
    threat_id: Optional[str] = None
    vulnerability_id: Optional[str] = None


class RiskUpdate(BaseModel):
    """Request body for PUT/PATCH /api/v1/risks/{id}. Only fields sent are applied.

    Types are looser than RiskCreate: an explicit null is forwarded so the
    mutation guard can report "cannot be cleared" per field.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, max_length=200)
    category: Optional[RiskCategoryEnum] = None
    probability: Numeric = None
    impact: Numeric = None
    description: Optional[str] = Field(default=None, max_length=5000)
    status: Optional[RiskStatusEnum] = None
    treatment_strategy: Optional[TreatmentEnum] = None
    treatment_plan: Optional[str] = Field(default=None, max_length=5000)
    residual_probability: Numeric = None
    residual_impact: Numeric = None
    threat_id: Optional[str] = None
    vulnerability_id: Optional[str] = None


class CalculateRequest(BaseModel):
    """Request body for POST /api/v1/risks/calculate."""

    probability: Numeric
    impact: Numeric
    reduction_factor: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class RiskResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: int
    name: str
    category: str
    probability: Optional[float]
    impact: Optional[int]
    score: Optional[float]
    level: Optional[str]
    status: str
    description: Optional[str] = None
    treatment_strategy: Optional[str] = None
    treatment_plan: Optional[str] = None
    residual_probability: Optional[float] = None
    residual_impact: Optional[int] = None
    residual_score: Optional[float] = None
    threat_id: Optional[str] = None
    vulnerability_id: Optional[str] = None
    created_at: str
    updated_at: str

    @classmethod
    def from_entity(cls, risk: Risk) -> "RiskResponse":
        return cls(**asdict(risk))


class RiskListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: list[RiskResponse]
    total: int
    limit: int
    offset: int


class PrioritizedRisk(BaseModel):
    """One row of GET /risks/prioritized: the risk plus its 1-based rank."""

    model_config = ConfigDict(frozen=True)

    priority: int
    risk: RiskResponse


# ---------------------------------------------------------------------------
# Threats
# ---------------------------------------------------------------------------


class ThreatCreate(BaseModel):
    """Request body for POST /api/v1/threats."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=200)
    type: ThreatTypeEnum
    severity: SeverityEnum
    status: Optional[ThreatStatusEnum] = None
    description: Optional[str] = Field(default=None, max_length=5000)
    source: Optional[str] = Field(default=None, max_length=255)
    probability: Numeric = None
    impact: Numeric = None
    mitigation_strategy: Optional[str] = Field(default=None, max_length=5000)
    detected_at: Optional[str] = None


class ThreatUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, max_length=200)
    type: Optional[ThreatTypeEnum] = None
    severity: Optional[SeverityEnum] = None
    status: Optional[ThreatStatusEnum] = None
    description: Optional[str] = Field(default=None, max_length=5000)
    source: Optional[str] = Field(default=None, max_length=255)
    probability: Numeric = None
    impact: Numeric = None
    mitigation_strategy: Optional[str] = Field(default=None, max_length=5000)
    detected_at: Optional[str] = None


class ThreatResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: int
    name: str
    type: str
    severity: str
    status: str
    description: Optional[str] = None
    source: Optional[str] = None
    probability: Optional[float] = None
    impact: Optional[int] = None
    risk_score: Optional[float] = None
    mitigation_strategy: Optional[str] = None
    detected_at: str
    mitigated_at: Optional[str] = None
    created_at: str
    updated_at: str

    @classmethod
    def from_entity(cls, threat: Threat) -> "ThreatResponse":
        return cls(**asdict(threat))


class ThreatListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: list[ThreatResponse]
    total: int
    limit: int
    offset: int


class ThreatStatistics(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    by_severity: dict[str, int]
    active: int
    mitigated: int


# ---------------------------------------------------------------------------
# Vulnerabilities
# ---------------------------------------------------------------------------


class VulnerabilityCreate(BaseModel):
    """Request body for POST /api/v1/vulnerabilities.

    severity may be omitted when cvss_score is given; it is then derived
    from the CVSS band.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=200)
    severity: Optional[SeverityEnum] = None
    cvss_score: Numeric = None
    cve_id: Optional[str] = Field(default=None, pattern=r"(?i)^CVE-\d{4}-\d{4,}$")
    status: Optional[VulnStatusEnum] = None
    description: Optional[str] = Field(default=None, max_length=5000)
    affected_systems: Optional[str] = Field(default=None, max_length=5000)
    remediation: Optional[str] = Field(default=None, max_length=5000)
    discovered_at: Optional[str] = None


class VulnerabilityUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, max_length=200)
    severity: Optional[SeverityEnum] = None
    cvss_score: Numeric = None
    cve_id: Optional[str] = Field(default=None, pattern=r"(?i)^CVE-\d{4}-\d{4,}$")
    status: Optional[VulnStatusEnum] = None
    description: Optional[str] = Field(default=None, max_length=5000)
    affected_systems: Optional[str] = Field(default=None, max_length=5000)
    remediation: Optional[str] = Field(default=None, max_length=5000)
    discovered_at: Optional[str] = None


class VulnerabilityResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: int
    name: str
    severity: str
    status: str
    description: Optional[str] = None
    cve_id: Optional[str] = None
    cvss_score: Optional[float] = None
    affected_systems: Optional[str] = None
    remediation: Optional[str] = None
    discovered_at: str
    patched_at: Optional[str] = None
    created_at: str
    updated_at: str

    @classmethod
    def from_entity(cls, vuln: Vulnerability) -> "VulnerabilityResponse":
        return cls(**asdict(vuln))


class VulnerabilityListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: list[VulnerabilityResponse]
    total: int
    limit: int
    offset: int


class VulnerabilityStatistics(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    by_severity: dict[str, int]
    open: int


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------


class AssetCreate(BaseModel):
    """Request body for POST /api/v1/assets."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=200)
    type: AssetTypeEnum
    criticality: Optional[SeverityEnum] = None
    status: Optional[AssetStatusEnum] = None
    exposure_level: Optional[ExposureEnum] = None
    is_public_facing: Optional[bool] = None
    description: Optional[str] = Field(default=None, max_length=5000)
    ip_address: Optional[str] = Field(default=None, max_length=45)
    hostname: Optional[str] = Field(default=None, max_length=255)
    os: Optional[str] = Field(default=None, max_length=100)
    location: Optional[str] = Field(default=None, max_length=255)
    owner: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = Field(default=None, max_length=5000)
    position_x: Numeric = None
    position_y: Numeric = None
    ports_open: Optional[list[Union[int, str]]] = Field(default=None, max_length=1000)
    services: Optional[list[str]] = Field(default=None, max_length=200)
    connections: Optional[list[str]] = Field(default=None, max_length=500)
    tags: Optional[list[str]] = Field(default=None, max_length=50)


class AssetUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, max_length=200)
    type: Optional[AssetTypeEnum] = None
    criticality: Optional[SeverityEnum] = None
    status: Optional[AssetStatusEnum] = None
    exposure_level: Optional[ExposureEnum] = None
    is_public_facing: Optional[bool] = None
    description: Optional[str] = Field(default=None, max_length=5000)
    ip_address: Optional[str] = Field(default=None, max_length=45)
    hostname: Optional[str] = Field(default=None, max_length=255)
    os: Optional[str] = Field(default=None, max_length=100)
    location: Optional[str] = Field(default=None, max_length=255)
    owner: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = Field(default=None, max_length=5000)
    position_x: Numeric = None
    position_y: Numeric = None
    ports_open: Optional[list[Union[int, str]]] = Field(default=None, max_length=1000)
    services: Optional[list[str]] = Field(default=None, max_length=200)
    connections: Optional[list[str]] = Field(default=None, max_length=500)
    tags: Optional[list[str]] = Field(default=None, max_length=50)


class PositionUpdate(BaseModel):
    """Request body for PATCH /api/v1/assets/{id}/position (topology drag)."""

    position_x: Union[int, float, str]
    position_y: Union[int, float, str]


class AssetResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: int
    name: str
    type: str
    criticality: str
    status: str
    exposure_level: str
    is_public_facing: bool
    description: Optional[str] = None
    ip_address: Optional[str] = None
    hostname: Optional[str] = None
    os: Optional[str] = None
    location: Optional[str] = None
    owner: Optional[str] = None
    notes: Optional[str] = None
    position_x: Optional[float] = None
    position_y: Optional[float] = None
    ports_open: list[int] = Field(default_factory=list)
    services: list[str] = Field(default_factory=list)
    connections: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    created_at: str
    updated_at: str

    @classmethod
    def from_entity(cls, asset: Asset) -> "AssetResponse":
        return cls(**asdict(asset))


class AssetListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: list[AssetResponse]
    total: int
    limit: int
    offset: int


class AssetStatistics(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    public_facing: int
    by_type: dict[str, int]
    by_criticality: dict[str, int]
    by_exposure: dict[str, int]


class TopologyNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: str
    criticality: str
    exposure_level: str
    is_public_facing: bool
    status: str
    ip_address: Optional[str] = None
    x: Optional[float] = None
    y: Optional[float] = None


class TopologyLink(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    target: str


class TopologyResponse(BaseModel):
    """Response for GET /api/v1/assets/topology."""

    model_config = ConfigDict(frozen=True)

    nodes: list[TopologyNode]
    links: list[TopologyLink]


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


class AlertView(BaseModel):
    """One synthesized alert. id is the "<type>-<entity id>" key."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: str
    severity: str
    name: str
    description: Optional[str] = None
    created_at: str
    updated_at: str
    alert_status: str
    is_read: bool
    data: dict[str, Any]


class AlertListResponse(BaseModel):
    """Response for GET /api/v1/alerts."""

    model_config = ConfigDict(frozen=True)

    alerts: list[AlertView]
    total: int
    critical: int
    high: int


class AlertSeverityBucket(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    risks: int
    threats: int
    vulnerabilities: int


class AlertStatistics(BaseModel):
    """Response for GET /api/v1/alerts/statistics."""

    model_config = ConfigDict(frozen=True)

    critical: AlertSeverityBucket
    high: AlertSeverityBucket
    total_alerts: int


class AlertRowResponse(BaseModel):
    """The persisted Alert row after a read/acknowledge/resolve/dismiss action."""

    model_config = ConfigDict(frozen=True)

    id: str
    key: str
    related_entity_type: str
    related_entity_id: str
    title: str
    message: str
    type: str
    severity: str
    status: str
    is_read: bool
    email_sent: bool
    acknowledged_by: Optional[int] = None
    acknowledged_at: Optional[str] = None
    resolved_at: Optional[str] = None
    created_at: str
    updated_at: str

    @classmethod
    def from_entity(cls, alert: Alert) -> "AlertRowResponse":
        values = asdict(alert)
        values.pop("user_id")
        return cls(key=alert.key, **values)


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


class EntityCounts(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    by_severity: dict[str, int]


class RiskMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_risks: int
    average_risk_score: float
    max_risk_score: float
    min_risk_score: float
    risk_distribution: dict[str, int]
    critical_percentage: float
    high_percentage: float


class DashboardResponse(BaseModel):
    """Response for GET /api/v1/dashboard."""

    model_config = ConfigDict(frozen=True)

    threats: EntityCounts
    vulnerabilities: EntityCounts
    risks: EntityCounts
    assets: EntityCounts
    risk_metrics: RiskMetrics
    alerts: AlertStatistics
    top_risks: list[PrioritizedRisk]


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register (self-service sign-up)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=8, max_length=128)
    email: Optional[str] = Field(default=None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    username: str
    role: str


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    role: str
    email: Optional[str] = None


class ApiKeyCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)


class ApiKeyResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    key_prefix: str
    created_at: str
    last_used: Optional[str] = None


class ApiKeyCreatedResponse(ApiKeyResponse):
    """Returned once at creation: the only time the raw key is visible."""

    key: str


class UserCreate(BaseModel):
    """Request body for POST /api/v1/auth/users (admin only)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=8, max_length=128)
    role: RoleEnum = RoleEnum.analyst
    email: Optional[str] = Field(default=None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class UserPatch(BaseModel):
    role: Optional[RoleEnum] = None
    is_active: Optional[bool] = None


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    role: str
    email: Optional[str] = None
    is_active: bool
    created_at: str
    last_login: Optional[str] = None


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------


class RiskCalculation(BaseModel):
    model_config = ConfigDict(frozen=True)

    probability: float
    impact: int
    risk_score: float
    risk_level: str
    description: str


class CalculateResponse(RiskCalculation):
    """Response for POST /api/v1/risks/calculate.

    residual is present only when the request carried reduction_factor.
    """

    residual: Optional[RiskCalculation] = None


class MatrixPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    probability: Optional[float]
    impact: Optional[int]
    risk_score: Optional[float]
    risk_level: Optional[str]
    category: str


class RiskMatrixResponse(BaseModel):
    """Response for GET /api/v1/risks/matrix. statistics holds per-level counts plus total."""

    model_config = ConfigDict(frozen=True)

    data: list[MatrixPoint]
    statistics: dict[str, int]
