"""
Governance Calculator

Computes governance scores, violations and per-collection metadata from a
PostmanSnapshot. All calculations are pure functions of the snapshot; no API
calls are made here.

Scoring dimensions:
    - Documentation: endpoints with a description and a saved example
    - Testing: endpoints with a test script
    - Monitoring: collections referenced by a monitor
    - Organization: private workspace ratio and collection naming convention

Usage:
    calculator = GovernanceCalculator(config["governance"], logger)
    metrics = calculator.calculate_metrics(snapshot)
    violations = calculator.calculate_violations(snapshot)
"""

import re
import time
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from governance_collector.domain.governance import (
    CollectionMetadata,
    DocumentationCoverage,
    EndpointAnalysis,
    GovernanceMetrics,
    GovernanceViolations,
    MonitoringCoverage,
    OrganizationalInsights,
    OrganizationStructure,
    PostmanSnapshot,
    TestCoverage,
    UserManagement,
    Violation,
    WorkspaceAdmin,
)

NAMING_PATTERN = re.compile(r"^[A-Z]+-[A-Z]+-\w+\[(SPEC|STAGE|DEV|E2E|MONITOR)\]$")

IDEAL_PRIVATE_RATIO = 0.8

# Monitor fields that may reference the monitored collection, in lookup order
MONITOR_COLLECTION_FIELDS = ("collectionUid", "collection", "collectionId")

DEFAULT_WORKSPACE_NAME = "Postman Team Workspace"
DEFAULT_ADMIN_EMAIL = "team@postman.com"

DEFAULT_THRESHOLDS = {
    "critical_compliance_score": 60,
    "warning_compliance_score": 80,
    "min_documentation_coverage": 80,
    "min_test_coverage": 70,
}

VIOLATION_SEVERITY = {
    "missing_documentation": "medium",
    "untested_collections": "high",
    "unmonitored_collections": "low",
    "collections_without_specs": "medium",
    "naming_convention": "low",
    "untagged_workspaces": "low",
    "orphaned_users": "low",
}


def analyze_endpoints(items: Iterable[Mapping[str, Any]] | None) -> EndpointAnalysis:
    """
    Count endpoints in a collection item tree, descending into folders.

    An item with a ``request`` is an endpoint. It is documented when the
    request or item has a description and it has at least one saved
    response; it is tested when one of its events listens on ``test`` and
    carries script lines.

    Args:
        items: Collection ``item`` list (folders and requests)

    Returns:
        EndpointAnalysis with total, documented and tested counts
    """
    analysis = EndpointAnalysis()

    for item in items or []:
        if item.get("request"):
            request = item["request"]
            request_description = request.get("description") if isinstance(request, Mapping) else None
            has_description = bool(request_description or item.get("description"))
            has_example = bool(item.get("response"))
            has_tests = any(
                event.get("listen") == "test" and (event.get("script") or {}).get("exec")
                for event in item.get("event") or []
            )

            analysis.total_endpoints += 1
            if has_description and has_example:
                analysis.documented_endpoints += 1
            if has_tests:
                analysis.tested_endpoints += 1

        elif item.get("item"):
            analysis = analysis.merge(analyze_endpoints(item["item"]))

    return analysis


def has_proper_naming_convention(name: Any) -> bool:
    """Check a collection name against TEAM-DOMAIN-Name[STAGE] style naming"""
    return isinstance(name, str) and NAMING_PATTERN.match(name) is not None


def _spec_collection_ids(api_specs: list[dict[str, Any]]) -> set[str]:
    ids = set()
    for spec in api_specs:
        collections = spec.get("collections") or []
        if collections and isinstance(collections[0], Mapping) and collections[0].get("id"):
            ids.add(collections[0]["id"])
    return ids


def _monitored_collection_ids(monitors: list[dict[str, Any]]) -> set[Any]:
    for field_name in MONITOR_COLLECTION_FIELDS:
        ids = {monitor.get(field_name) for monitor in monitors if monitor.get(field_name)}
        if ids:
            return ids
    return set()


class GovernanceCalculator:
    """
    Governance scoring engine.

    Args:
        config: The ``governance`` configuration section (weights, thresholds)
        logger: GovernanceLogger
    """

    def __init__(self, config: Mapping[str, Any], logger: Any):
        self.logger = logger
        self.weights = dict(config.get("weights") or {})
        self.thresholds = {**DEFAULT_THRESHOLDS, **(config.get("thresholds") or {})}

    # ==============================
    # Category scores
    # ==============================

    def _analyze_collections(self, collections: list[dict[str, Any]]) -> EndpointAnalysis:
        total = EndpointAnalysis()
        for collection in collections:
            total = total.merge(analyze_endpoints(collection.get("item")))
        return total

    @staticmethod
    def _coverage_score(coverage: float, threshold: float) -> float:
        if threshold <= 0:
            return 100.0
        return min(100.0, coverage / threshold * 100)

    def calculate_documentation_coverage(self, collections: list[dict[str, Any]]) -> DocumentationCoverage:
        analysis = self._analyze_collections(collections)
        coverage = (
            analysis.documented_endpoints / analysis.total_endpoints * 100 if analysis.total_endpoints else 0.0
        )
        return DocumentationCoverage(
            score=self._coverage_score(coverage, self.thresholds["min_documentation_coverage"]),
            coverage=coverage,
            total_endpoints=analysis.total_endpoints,
            documented_endpoints=analysis.documented_endpoints,
            undocumented_endpoints=analysis.undocumented_endpoints,
        )

    def calculate_test_coverage(self, collections: list[dict[str, Any]]) -> TestCoverage:
        analysis = self._analyze_collections(collections)
        coverage = analysis.tested_endpoints / analysis.total_endpoints * 100 if analysis.total_endpoints else 0.0
        return TestCoverage(
            score=self._coverage_score(coverage, self.thresholds["min_test_coverage"]),
            coverage=coverage,
            total_endpoints=analysis.total_endpoints,
            tested_endpoints=analysis.tested_endpoints,
            untested_endpoints=analysis.untested_endpoints,
        )

    def calculate_monitoring_coverage(
        self, collections: list[dict[str, Any]], monitors: list[dict[str, Any]]
    ) -> MonitoringCoverage:
        monitored_ids = _monitored_collection_ids(monitors)
        total = len(collections)
        monitored = len(monitored_ids)
        coverage = monitored / total * 100 if total else 0.0

        self.logger.debug(
            "Monitoring coverage calculated",
            {"total_monitors": len(monitors), "total_collections": total, "monitored_collections": monitored},
        )
        return MonitoringCoverage(
            score=min(100.0, coverage),
            coverage=coverage,
            total_collections=total,
            monitored_collections=monitored,
            unmonitored_collections=max(0, total - monitored),
        )

    def calculate_organization_structure(
        self, workspaces: list[dict[str, Any]], collections: list[dict[str, Any]]
    ) -> OrganizationStructure:
        total_workspaces = len(workspaces)
        team_workspaces = sum(1 for w in workspaces if w.get("type") == "team")
        private_workspaces = sum(1 for w in workspaces if w.get("type") == "private")

        private_ratio = private_workspaces / total_workspaces if total_workspaces else 0.0
        ratio_score = max(0.0, 100 - abs(IDEAL_PRIVATE_RATIO - private_ratio) * 200)

        properly_named = sum(1 for c in collections if has_proper_naming_convention(c.get("name")))
        naming_score = properly_named / len(collections) * 100 if collections else 100.0

        return OrganizationStructure(
            score=ratio_score * 0.6 + naming_score * 0.4,
            total_workspaces=total_workspaces,
            team_workspaces=team_workspaces,
            private_workspaces=private_workspaces,
            private_workspace_ratio=private_ratio,
            naming_convention_score=naming_score,
            properly_named_collections=properly_named,
        )

    def calculate_user_management(self, snapshot: PostmanSnapshot) -> UserManagement:
        """
        Count distinct users across every source the API exposes.

        Sources, in precedence order for attribution: the API key owner,
        team users, workspace roles, user groups (only without team users)
        and workspace members (only when nothing else was found).
        """
        user_sources: dict[Any, str] = {}
        current_user = snapshot.current_user

        if current_user.get("id"):
            user_sources[current_user["id"]] = "api_user"

        for team_user in snapshot.team_users:
            if team_user.get("id"):
                user_sources[team_user["id"]] = "team_users"

        for workspace_role in snapshot.workspace_roles:
            for user_id in workspace_role.get("users") or []:
                if user_id:
                    user_sources.setdefault(user_id, "workspace_roles")

        if not snapshot.team_users:
            for group in snapshot.user_groups:
                for group_user in group.get("users") or []:
                    if isinstance(group_user, Mapping) and group_user.get("id"):
                        user_sources.setdefault(group_user["id"], "user_groups")

        if len(user_sources) == 1 and not snapshot.team_users:
            for workspace in snapshot.workspaces:
                for member in workspace.get("members") or []:
                    if isinstance(member, Mapping) and member.get("id"):
                        user_sources.setdefault(member["id"], "workspace_members")

        users_in_groups = {
            member_id for group in snapshot.user_groups for member_id in group.get("members") or [] if member_id
        }

        total_users = len(user_sources)
        source_counts: dict[str, int] = {}
        for source in user_sources.values():
            source_counts[source] = source_counts.get(source, 0) + 1

        usage = ((current_user.get("operations") or {}).get("usage") or {}).get("postbot") or {}

        result = UserManagement(
            total_users=total_users,
            total_user_groups=len(snapshot.user_groups),
            total_postbot_uses=usage.get("monthly") or 0,
            orphaned_users=max(0, total_users - len(users_in_groups)),
            user_group_coverage=len(users_in_groups) / total_users * 100 if total_users else 0.0,
            user_sources=source_counts,
            workspace_roles_analyzed=len(snapshot.workspace_roles),
        )
        self.logger.info(
            "User management calculation completed",
            {
                "total_users": result.total_users,
                "orphaned_users": result.orphaned_users,
                "users_in_groups": len(users_in_groups),
                "user_sources": source_counts,
            },
        )
        return result

    def calculate_organizational_insights(self, snapshot: PostmanSnapshot) -> OrganizationalInsights:
        spec_ids = _spec_collection_ids(snapshot.api_specs)
        total_collections = len(snapshot.collections)
        without_specs = sum(1 for c in snapshot.collections if c.get("uid") not in spec_ids)

        return OrganizationalInsights(
            total_workspaces=len(snapshot.workspaces),
            total_collections=total_collections,
            total_mocks=len(snapshot.mocks),
            total_monitors=len(snapshot.monitors),
            total_forks=sum(len(c.get("forks") or []) for c in snapshot.collections),
            collections_without_specs=without_specs,
            specification_coverage=(
                (total_collections - without_specs) / total_collections * 100 if total_collections else 0.0
            ),
        )

    def calculate_overall_score(
        self,
        documentation: DocumentationCoverage,
        testing: TestCoverage,
        monitoring: MonitoringCoverage,
        organization: OrganizationStructure,
    ) -> float:
        return (
            documentation.score * self.weights.get("documentation", 0)
            + testing.score * self.weights.get("testing", 0)
            + monitoring.score * self.weights.get("monitoring", 0)
            + organization.score * self.weights.get("organization", 0)
        )

    def compliance_status(self, overall_score: float) -> str:
        if overall_score < self.thresholds["critical_compliance_score"]:
            return "critical"
        if overall_score < self.thresholds["warning_compliance_score"]:
            return "warning"
        return "healthy"

    # ==============================
    # Metadata
    # ==============================

    @staticmethod
    def _collection_workspaces(snapshot: PostmanSnapshot) -> dict[str, dict[str, Any]]:
        """Map collection uid → workspace, from workspace detail payloads"""
        mapping: dict[str, dict[str, Any]] = {}
        for workspace in snapshot.workspaces:
            for entry in workspace.get("collections") or []:
                uid = (entry.get("uid") or entry.get("id")) if isinstance(entry, Mapping) else None
                if uid:
                    mapping.setdefault(uid, workspace)
        return mapping

    @staticmethod
    def _default_workspace_name(snapshot: PostmanSnapshot) -> str:
        for workspace in snapshot.workspaces:
            name = (workspace.get("name") or "").strip()
            if name:
                return name
        return DEFAULT_WORKSPACE_NAME

    def generate_collection_metadata(self, snapshot: PostmanSnapshot) -> list[CollectionMetadata]:
        spec_ids = _spec_collection_ids(snapshot.api_specs)
        workspace_by_collection = self._collection_workspaces(snapshot)
        default_name = self._default_workspace_name(snapshot)

        metadata = []
        for collection in snapshot.collections:
            uid = collection.get("uid")
            workspace = workspace_by_collection.get(uid)
            analysis = analyze_endpoints(collection.get("item"))
            metadata.append(
                CollectionMetadata(
                    id=uid,
                    name=collection.get("name"),
                    workspace_id=workspace.get("id") if workspace else (collection.get("owner") or "unknown"),
                    workspace_name=workspace.get("name") if workspace else default_name,
                    has_specification=uid in spec_ids,
                    endpoint_count=analysis.total_endpoints,
                    documented_endpoints=analysis.documented_endpoints,
                    tested_endpoints=analysis.tested_endpoints,
                    fork_count=len(collection.get("forks") or []),
                )
            )
        return metadata

    def extract_workspace_admins(self, workspaces: list[dict[str, Any]]) -> list[WorkspaceAdmin]:
        """
        Find admins per workspace from role listings.

        Roles whose name contains "admin" contribute their users. Workspaces
        without role data fall back to their creator.
        """
        admins = []
        for workspace in workspaces:
            roles = (workspace.get("roles") or {}).get("roles") if isinstance(workspace.get("roles"), Mapping) else None

            if roles:
                for role in roles:
                    if "admin" not in (role.get("name") or "").lower():
                        continue
                    for user in role.get("users") or []:
                        admins.append(
                            WorkspaceAdmin(
                                workspace_id=workspace.get("id"),
                                workspace_name=workspace.get("name"),
                                user_id=str(user.get("id")),
                                email=user.get("email") or "unknown",
                                name=user.get("name") or user.get("username") or "Unknown",
                            )
                        )
            elif workspace.get("createdBy"):
                admins.append(
                    WorkspaceAdmin(
                        workspace_id=workspace.get("id"),
                        workspace_name=workspace.get("name"),
                        user_id=str(workspace["createdBy"]),
                        email="unknown",
                        name="Workspace Creator",
                    )
                )
        return admins

    # ==============================
    # Entry points
    # ==============================

    def calculate_metrics(self, snapshot: PostmanSnapshot) -> GovernanceMetrics:
        """
        Compute every governance metric for a snapshot.

        Args:
            snapshot: Data gathered by PostmanAPIClient.collect_all_data()

        Returns:
            GovernanceMetrics
        """
        start = time.monotonic()
        self.logger.info("Starting governance metrics calculation")

        documentation = self.calculate_documentation_coverage(snapshot.collections)
        testing = self.calculate_test_coverage(snapshot.collections)
        monitoring = self.calculate_monitoring_coverage(snapshot.collections, snapshot.monitors)
        organization = self.calculate_organization_structure(snapshot.workspaces, snapshot.collections)
        overall = self.calculate_overall_score(documentation, testing, monitoring, organization)

        metrics = GovernanceMetrics(
            timestamp=datetime.now(UTC),
            overall_score=overall,
            compliance_status=self.compliance_status(overall),
            documentation_coverage=documentation,
            test_coverage=testing,
            monitoring_coverage=monitoring,
            organization_structure=organization,
            user_management=self.calculate_user_management(snapshot),
            organizational_insights=self.calculate_organizational_insights(snapshot),
            collection_metadata=self.generate_collection_metadata(snapshot),
            workspace_admins=self.extract_workspace_admins(snapshot.workspaces),
        )

        self.logger.info(
            "Governance metrics calculation completed",
            {
                "duration_ms": round((time.monotonic() - start) * 1000),
                "overall_score": round(overall, 2),
                "compliance_status": metrics.compliance_status,
            },
        )
        return metrics

    def calculate_violations(self, snapshot: PostmanSnapshot) -> GovernanceViolations:
        """
        Find governance rule breaches in a snapshot.

        Collection violations are attributed to the workspace that lists the
        collection (falling back to the first named workspace) and to that
        workspace's first admin (falling back to the API key owner).

        Args:
            snapshot: Data gathered by PostmanAPIClient.collect_all_data()

        Returns:
            GovernanceViolations grouped by violation type
        """
        start = time.monotonic()
        self.logger.info("Starting governance violations analysis")

        violations = GovernanceViolations()
        workspace_by_collection = self._collection_workspaces(snapshot)
        default_workspace_name = self._default_workspace_name(snapshot)
        owner_email = snapshot.current_user.get("email") or DEFAULT_ADMIN_EMAIL

        admin_email_by_workspace: dict[Any, str] = {}
        for admin in self.extract_workspace_admins(snapshot.workspaces):
            if admin.email and admin.email != "unknown":
                admin_email_by_workspace.setdefault(admin.workspace_id, admin.email)

        def collection_violation(
            violation_type: str, collection: Mapping[str, Any], description: str, **details: Any
        ) -> Violation:
            workspace = workspace_by_collection.get(collection.get("uid"))
            workspace_id = workspace.get("id") if workspace else (collection.get("owner") or "unknown")
            return Violation(
                violation_type=violation_type,
                entity_id=collection.get("uid"),
                entity_name=collection.get("name"),
                severity=VIOLATION_SEVERITY[violation_type],
                description=description,
                workspace_id=workspace_id,
                workspace_name=workspace.get("name") if workspace else default_workspace_name,
                workspace_admin_email=admin_email_by_workspace.get(workspace_id, owner_email),
                details=details,
            )

        spec_ids = _spec_collection_ids(snapshot.api_specs)
        monitored_ids = _monitored_collection_ids(snapshot.monitors)

        for collection in snapshot.collections:
            analysis = analyze_endpoints(collection.get("item"))

            if analysis.undocumented_endpoints > 0:
                violations.add(
                    collection_violation(
                        "missing_documentation",
                        collection,
                        f"{analysis.undocumented_endpoints} of {analysis.total_endpoints} endpoints lack "
                        "a description or example response",
                        undocumented_endpoints=analysis.undocumented_endpoints,
                        total_endpoints=analysis.total_endpoints,
                    )
                )

            if analysis.untested_endpoints > 0:
                violations.add(
                    collection_violation(
                        "untested_collections",
                        collection,
                        f"{analysis.untested_endpoints} of {analysis.total_endpoints} endpoints have no tests",
                        untested_endpoints=analysis.untested_endpoints,
                        total_endpoints=analysis.total_endpoints,
                    )
                )

            if monitored_ids and collection.get("uid") not in monitored_ids:
                violations.add(
                    collection_violation("unmonitored_collections", collection, "Collection has no monitor")
                )

            if collection.get("uid") not in spec_ids:
                violations.add(
                    collection_violation(
                        "collections_without_specs", collection, "Collection is not linked to an API specification"
                    )
                )

            if not has_proper_naming_convention(collection.get("name")):
                violations.add(
                    collection_violation(
                        "naming_convention", collection, "Collection name does not follow TEAM-DOMAIN-Name[STAGE]"
                    )
                )

        for workspace in snapshot.workspaces:
            # Only workspaces whose tags were fetched
            if "tags" in workspace and not workspace["tags"]:
                violations.add(
                    Violation(
                        violation_type="untagged_workspaces",
                        entity_id=workspace.get("id"),
                        entity_name=workspace.get("name"),
                        severity=VIOLATION_SEVERITY["untagged_workspaces"],
                        description="Workspace has no tags",
                        workspace_id=workspace.get("id"),
                        workspace_name=workspace.get("name"),
                        workspace_admin_email=admin_email_by_workspace.get(workspace.get("id"), owner_email),
                    )
                )

        if snapshot.user_groups:
            users_in_groups = {
                member_id for group in snapshot.user_groups for member_id in group.get("members") or [] if member_id
            }
            candidates = [snapshot.current_user] if snapshot.current_user else []
            candidates.extend(snapshot.team_users)

            seen = set()
            for user in candidates:
                user_id = user.get("id")
                if not user_id or user_id in users_in_groups or user_id in seen:
                    continue
                seen.add(user_id)
                violations.add(
                    Violation(
                        violation_type="orphaned_users",
                        entity_id=str(user_id),
                        entity_name=user.get("fullName") or user.get("username") or "Unknown",
                        severity=VIOLATION_SEVERITY["orphaned_users"],
                        description="User is not a member of any user group",
                        details={"email": user.get("email")},
                    )
                )

        self.logger.info(
            "Governance violations analysis completed",
            {"duration_ms": round((time.monotonic() - start) * 1000), "total_violations": violations.total},
        )
        return violations
