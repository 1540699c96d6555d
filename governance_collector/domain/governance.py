"""
Governance domain models - Postman governance metrics and violations

Represents the results of a governance collection run:
    - PostmanSnapshot: Raw entities fetched from the Postman API
    - Coverage and structure scores per governance category
    - GovernanceMetrics: Everything computed for one run
    - Violation / GovernanceViolations: Rule breaches found in one run
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

# Violation types, in reporting order
VIOLATION_TYPES = (
    "missing_documentation",
    "untested_collections",
    "unmonitored_collections",
    "collections_without_specs",
    "naming_convention",
    "untagged_workspaces",
    "orphaned_users",
)

SEVERITY_ORDER = ("critical", "high", "medium", "low")


@dataclass
class PostmanSnapshot:
    """
    Raw Postman entities gathered by one collection pass.

    Entities are kept as the API returns them (dicts); workspace and
    collection entries are enriched in place with their detail payloads
    (members, tags, roles, items, forks).

    Attributes:
        user: Response of GET /me ({"user": {...}, "operations": [...]})
        workspaces: Workspace summaries merged with details
        collections: Collection summaries merged with details
        environments: Environment summaries
        api_specs: API definitions
        user_groups: Team user groups
        team_users: Team members
        mocks: Mock servers
        monitors: Monitors
        private_network_apis: Private API network entries
        workspace_roles: Per-workspace role listings
    """

    user: dict[str, Any] = field(default_factory=dict)
    workspaces: list[dict[str, Any]] = field(default_factory=list)
    collections: list[dict[str, Any]] = field(default_factory=list)
    environments: list[dict[str, Any]] = field(default_factory=list)
    api_specs: list[dict[str, Any]] = field(default_factory=list)
    user_groups: list[dict[str, Any]] = field(default_factory=list)
    team_users: list[dict[str, Any]] = field(default_factory=list)
    mocks: list[dict[str, Any]] = field(default_factory=list)
    monitors: list[dict[str, Any]] = field(default_factory=list)
    private_network_apis: list[dict[str, Any]] = field(default_factory=list)
    workspace_roles: list[dict[str, Any]] = field(default_factory=list)

    @property
    def current_user(self) -> dict[str, Any]:
        """The authenticated user record (empty dict if unknown)"""
        user = self.user.get("user") if isinstance(self.user, dict) else None
        return user if isinstance(user, dict) else {}


@dataclass
class EndpointAnalysis:
    """
    Endpoint counts for a collection item tree.

    An endpoint is documented when it has a description and at least one
    saved example response, and tested when it has a test script.
    """

    total_endpoints: int = 0
    documented_endpoints: int = 0
    tested_endpoints: int = 0

    @property
    def undocumented_endpoints(self) -> int:
        return self.total_endpoints - self.documented_endpoints

    @property
    def untested_endpoints(self) -> int:
        return self.total_endpoints - self.tested_endpoints

    def merge(self, other: "EndpointAnalysis") -> "EndpointAnalysis":
        """Return the sum of two analyses"""
        return EndpointAnalysis(
            total_endpoints=self.total_endpoints + other.total_endpoints,
            documented_endpoints=self.documented_endpoints + other.documented_endpoints,
            tested_endpoints=self.tested_endpoints + other.tested_endpoints,
        )


@dataclass
class DocumentationCoverage:
    score: float
    coverage: float
    total_endpoints: int
    documented_endpoints: int
    undocumented_endpoints: int


@dataclass
class TestCoverage:
    score: float
    coverage: float
    total_endpoints: int
    tested_endpoints: int
    untested_endpoints: int

    __test__ = False  # not a pytest test class


@dataclass
class MonitoringCoverage:
    score: float
    coverage: float
    total_collections: int
    monitored_collections: int
    unmonitored_collections: int


@dataclass
class OrganizationStructure:
    """
    Workspace layout and naming quality.

    Attributes:
        score: 0.6 * private-ratio score + 0.4 * naming score
        private_workspace_ratio: Private workspaces / all workspaces
        naming_convention_score: Percent of collections matching the naming pattern
    """

    score: float
    total_workspaces: int
    team_workspaces: int
    private_workspaces: int
    private_workspace_ratio: float
    naming_convention_score: float
    properly_named_collections: int


@dataclass
class UserManagement:
    total_users: int
    total_user_groups: int
    total_postbot_uses: int
    orphaned_users: int
    user_group_coverage: float
    user_sources: dict[str, int] = field(default_factory=dict)
    workspace_roles_analyzed: int = 0


@dataclass
class OrganizationalInsights:
    total_workspaces: int
    total_collections: int
    total_mocks: int
    total_monitors: int
    total_forks: int
    collections_without_specs: int
    specification_coverage: float


@dataclass
class CollectionMetadata:
    id: str
    name: str
    workspace_id: str
    workspace_name: str
    has_specification: bool
    endpoint_count: int = 0
    documented_endpoints: int = 0
    tested_endpoints: int = 0
    fork_count: int = 0


@dataclass
class WorkspaceAdmin:
    workspace_id: str
    workspace_name: str
    user_id: str
    email: str
    name: str


@dataclass
class GovernanceMetrics:
    """
    Governance metrics computed for one collection run.

    Attributes:
        timestamp: When metrics were calculated
        overall_score: Weighted sum of the four category scores (0-100)
        compliance_status: "healthy", "warning" or "critical"

    Example:
        if metrics.is_critical:
            logger.warn("Governance score below critical threshold", {"score": metrics.overall_score})
    """

    timestamp: datetime
    overall_score: float
    compliance_status: str
    documentation_coverage: DocumentationCoverage
    test_coverage: TestCoverage
    monitoring_coverage: MonitoringCoverage
    organization_structure: OrganizationStructure
    user_management: UserManagement
    organizational_insights: OrganizationalInsights
    collection_metadata: list[CollectionMetadata] = field(default_factory=list)
    workspace_admins: list[WorkspaceAdmin] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not isinstance(self.timestamp, datetime):
            raise TypeError(f"timestamp must be datetime, got {type(self.timestamp)}")

    @property
    def is_critical(self) -> bool:
        return self.compliance_status == "critical"

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary"""
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data

    def __str__(self) -> str:
        return f"GovernanceMetrics(overall={self.overall_score:.1f}, status={self.compliance_status})"


@dataclass
class Violation:
    """
    A single governance rule breach.

    Attributes:
        violation_type: One of VIOLATION_TYPES
        entity_id: Collection uid, workspace id or user id
        entity_name: Display name of the entity
        severity: "critical", "high", "medium" or "low"
        description: Human-readable explanation
        details: Extra counts (e.g., undocumented_endpoints)
    """

    violation_type: str
    entity_id: str
    entity_name: str
    severity: str
    description: str
    workspace_id: str | None = None
    workspace_name: str | None = None
    workspace_admin_email: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class GovernanceViolations:
    """Violations from one run, grouped by violation type"""

    by_type: dict[str, list[Violation]] = field(default_factory=lambda: {t: [] for t in VIOLATION_TYPES})

    def add(self, violation: Violation) -> None:
        self.by_type.setdefault(violation.violation_type, []).append(violation)

    def all(self) -> list[Violation]:
        return [v for violations in self.by_type.values() for v in violations]

    @property
    def total(self) -> int:
        return sum(len(violations) for violations in self.by_type.values())

    def counts(self) -> dict[str, int]:
        return {violation_type: len(violations) for violation_type, violations in self.by_type.items()}
