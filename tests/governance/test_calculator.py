"""
Tests for GovernanceCalculator

Covers:
- Endpoint analysis over nested folders
- Category scores and the weighted overall score
- Compliance status thresholds
- User counting across sources
- Collection metadata and workspace admins
- Violation detection and attribution
"""

import pytest

from governance_collector.domain.governance import PostmanSnapshot
from governance_collector.governance.calculator import (
    DEFAULT_ADMIN_EMAIL,
    DEFAULT_WORKSPACE_NAME,
    GovernanceCalculator,
    analyze_endpoints,
    has_proper_naming_convention,
)
from tests.conftest import BASE_CONFIG, make_request_item


@pytest.fixture
def calculator(mock_logger):
    return GovernanceCalculator(BASE_CONFIG["governance"], mock_logger)


class TestAnalyzeEndpoints:
    def test_documented_requires_description_and_example(self):
        items = [
            make_request_item("a", description="A", responses=1),
            make_request_item("b", description="B"),
            make_request_item("c", responses=1),
            make_request_item("d", item_description="D", responses=1),
        ]

        analysis = analyze_endpoints(items)

        assert analysis.total_endpoints == 4
        assert analysis.documented_endpoints == 2

    def test_tested_requires_script_lines(self):
        items = [
            make_request_item("a", test_script=["pm.test()"]),
            make_request_item("b", test_script=[]),
            make_request_item("c"),
        ]

        assert analyze_endpoints(items).tested_endpoints == 1

    def test_prerequest_scripts_are_not_tests(self):
        item = make_request_item("a")
        item["event"] = [{"listen": "prerequest", "script": {"exec": ["pm.variables.set()"]}}]

        assert analyze_endpoints([item]).tested_endpoints == 0

    def test_nested_folders(self):
        items = [
            {"name": "v1", "item": [{"name": "orders", "item": [make_request_item("a"), make_request_item("b")]}]},
            make_request_item("c"),
            {"name": "empty folder", "item": []},
        ]

        assert analyze_endpoints(items).total_endpoints == 3

    def test_none_items(self):
        assert analyze_endpoints(None).total_endpoints == 0


class TestNamingConvention:
    @pytest.mark.parametrize(
        "name",
        ["PAY-API-Orders[SPEC]", "SBX-DEV-Tools[DEV]", "CORE-PLATFORM-users_v2[E2E]", "A-B-c[MONITOR]"],
    )
    def test_valid_names(self, name):
        assert has_proper_naming_convention(name)

    @pytest.mark.parametrize(
        "name",
        ["orders collection", "PAY-API-Orders", "pay-api-Orders[SPEC]", "PAY-API-Orders[PROD]", "", None],
    )
    def test_invalid_names(self, name):
        assert not has_proper_naming_convention(name)


class TestCategoryScores:
    def test_documentation_coverage(self, calculator, sample_snapshot):
        result = calculator.calculate_documentation_coverage(sample_snapshot.collections)

        assert result.total_endpoints == 3
        assert result.documented_endpoints == 2
        assert result.undocumented_endpoints == 1
        assert result.coverage == pytest.approx(66.667, abs=0.01)
        assert result.score == pytest.approx(83.333, abs=0.01)

    def test_test_coverage(self, calculator, sample_snapshot):
        result = calculator.calculate_test_coverage(sample_snapshot.collections)

        assert result.tested_endpoints == 2
        assert result.score == pytest.approx(95.238, abs=0.01)

    def test_coverage_score_capped_at_100(self, calculator):
        collections = [{"item": [make_request_item("a", description="A", responses=1, test_script=["x"])]}]

        assert calculator.calculate_documentation_coverage(collections).score == 100.0
        assert calculator.calculate_test_coverage(collections).score == 100.0

    def test_zero_threshold_scores_full(self, mock_logger):
        config = {"weights": BASE_CONFIG["governance"]["weights"], "thresholds": {"min_test_coverage": 0}}
        calculator = GovernanceCalculator(config, mock_logger)

        assert calculator.calculate_test_coverage([]).score == 100.0

    def test_no_endpoints(self, calculator):
        result = calculator.calculate_documentation_coverage([])

        assert result.coverage == 0.0
        assert result.score == 0.0

    def test_monitoring_coverage(self, calculator, sample_snapshot):
        result = calculator.calculate_monitoring_coverage(sample_snapshot.collections, sample_snapshot.monitors)

        assert result.monitored_collections == 1
        assert result.unmonitored_collections == 2
        assert result.score == pytest.approx(33.333, abs=0.01)

    def test_monitoring_falls_back_to_collection_field(self, calculator):
        monitors = [{"id": "m1", "collection": "1-c1"}, {"id": "m2", "collection": "1-c1"}]

        result = calculator.calculate_monitoring_coverage([{"uid": "1-c1"}, {"uid": "1-c2"}], monitors)

        assert result.monitored_collections == 1
        assert result.coverage == 50.0

    def test_unmonitored_never_negative(self, calculator):
        monitors = [{"collectionUid": "a"}, {"collectionUid": "b"}]

        result = calculator.calculate_monitoring_coverage([{"uid": "a"}], monitors)

        assert result.unmonitored_collections == 0
        assert result.score == 100.0

    def test_organization_structure(self, calculator, sample_snapshot):
        result = calculator.calculate_organization_structure(sample_snapshot.workspaces, sample_snapshot.collections)

        assert result.team_workspaces == 1
        assert result.private_workspaces == 1
        assert result.private_workspace_ratio == 0.5
        assert result.naming_convention_score == pytest.approx(66.667, abs=0.01)
        assert result.properly_named_collections == 2
        assert result.score == pytest.approx(50.667, abs=0.01)

    def test_ideal_private_ratio_scores_full(self, calculator):
        workspaces = [{"type": "private"}] * 4 + [{"type": "team"}]

        result = calculator.calculate_organization_structure(workspaces, [])

        assert result.score == pytest.approx(100.0)

    def test_ratio_score_floored_at_zero(self, calculator):
        # ratio 0 is 0.8 from ideal: 100 - 160 clamps to 0
        result = calculator.calculate_organization_structure([{"type": "team"}], [{"name": "bad"}])

        assert result.score == 0.0


class TestOverallScore:
    def test_weighted_sum(self, calculator, sample_snapshot):
        metrics = calculator.calculate_metrics(sample_snapshot)

        assert metrics.overall_score == pytest.approx(67.276, abs=0.01)
        assert metrics.compliance_status == "warning"

    @pytest.mark.parametrize(
        "score, status",
        [(0, "critical"), (59.99, "critical"), (60, "warning"), (79.99, "warning"), (80, "healthy"), (100, "healthy")],
    )
    def test_compliance_status(self, calculator, score, status):
        assert calculator.compliance_status(score) == status


class TestUserManagement:
    def test_sample_users(self, calculator, sample_snapshot):
        result = calculator.calculate_user_management(sample_snapshot)

        assert result.total_users == 3
        assert result.user_sources == {"team_users": 3}
        assert result.total_user_groups == 1
        assert result.orphaned_users == 1
        assert result.user_group_coverage == pytest.approx(66.667, abs=0.01)
        assert result.total_postbot_uses == 7
        assert result.workspace_roles_analyzed == 1

    def test_roles_add_users_beyond_team_list(self, calculator):
        snapshot = PostmanSnapshot(
            user={"user": {"id": 1}},
            workspace_roles=[{"workspace_id": "ws", "users": [1, 5, 6]}],
        )

        result = calculator.calculate_user_management(snapshot)

        assert result.total_users == 3
        assert result.user_sources == {"api_user": 1, "workspace_roles": 2}

    def test_group_users_used_without_team_users(self, calculator):
        snapshot = PostmanSnapshot(
            user={"user": {"id": 1}},
            user_groups=[{"id": "g", "members": [1], "users": [{"id": 1}, {"id": 9}]}],
        )

        result = calculator.calculate_user_management(snapshot)

        assert result.user_sources == {"api_user": 1, "user_groups": 1}
        assert result.orphaned_users == 1

    def test_workspace_members_as_last_resort(self, calculator):
        snapshot = PostmanSnapshot(
            user={"user": {"id": 1}},
            workspaces=[{"id": "ws", "members": [{"id": 1}, {"id": 2}, {"name": "no id"}]}],
        )

        result = calculator.calculate_user_management(snapshot)

        assert result.total_users == 2
        assert result.user_sources == {"api_user": 1, "workspace_members": 1}

    def test_empty_snapshot(self, calculator):
        result = calculator.calculate_user_management(PostmanSnapshot())

        assert result.total_users == 0
        assert result.user_group_coverage == 0.0
        assert result.total_postbot_uses == 0


class TestOrganizationalInsights:
    def test_sample_insights(self, calculator, sample_snapshot):
        result = calculator.calculate_organizational_insights(sample_snapshot)

        assert result.total_forks == 2
        assert result.collections_without_specs == 2
        assert result.specification_coverage == pytest.approx(33.333, abs=0.01)
        assert result.total_mocks == 1
        assert result.total_monitors == 1
        assert result.total_workspaces == 2


class TestCollectionMetadata:
    def test_metadata_per_collection(self, calculator, sample_snapshot):
        metadata = {m.id: m for m in calculator.generate_collection_metadata(sample_snapshot)}

        orders = metadata["1-c1"]
        assert orders.workspace_id == "ws-1"
        assert orders.workspace_name == "Payments"
        assert orders.has_specification is True
        assert orders.endpoint_count == 2
        assert orders.documented_endpoints == 1
        assert orders.tested_endpoints == 1
        assert orders.fork_count == 2

        assert metadata["1-c3"].workspace_id == "ws-2"
        assert metadata["1-c3"].has_specification is False

    def test_unlisted_collection_falls_back_to_owner(self, calculator):
        snapshot = PostmanSnapshot(
            workspaces=[{"id": "ws-1", "name": "  "}], collections=[{"uid": "9-x", "name": "x", "owner": "9"}]
        )

        metadata = calculator.generate_collection_metadata(snapshot)[0]

        assert metadata.workspace_id == "9"
        assert metadata.workspace_name == DEFAULT_WORKSPACE_NAME


class TestWorkspaceAdmins:
    def test_admins_from_roles_and_creator(self, calculator, sample_snapshot):
        admins = calculator.extract_workspace_admins(sample_snapshot.workspaces)

        assert [(a.workspace_id, a.user_id, a.name, a.email) for a in admins] == [
            ("ws-1", "1", "Ada", "admin@corp.io"),
            ("ws-2", "42", "Workspace Creator", "unknown"),
        ]

    def test_workspace_without_roles_or_creator(self, calculator):
        assert calculator.extract_workspace_admins([{"id": "ws", "name": "x"}]) == []


class TestViolations:
    def test_sample_violation_counts(self, calculator, sample_snapshot):
        violations = calculator.calculate_violations(sample_snapshot)

        assert violations.counts() == {
            "missing_documentation": 1,
            "untested_collections": 1,
            "unmonitored_collections": 2,
            "collections_without_specs": 2,
            "naming_convention": 1,
            "untagged_workspaces": 1,
            "orphaned_users": 1,
        }
        assert violations.total == 9

    def test_collection_attributed_to_workspace_admin(self, calculator, sample_snapshot):
        violations = calculator.calculate_violations(sample_snapshot)

        missing = violations.by_type["missing_documentation"][0]
        assert missing.entity_id == "1-c1"
        assert missing.workspace_id == "ws-1"
        assert missing.workspace_name == "Payments"
        assert missing.workspace_admin_email == "admin@corp.io"
        assert missing.severity == "medium"
        assert missing.details == {"undocumented_endpoints": 1, "total_endpoints": 2}

    def test_workspace_without_admin_email_uses_owner(self, calculator, sample_snapshot):
        violations = calculator.calculate_violations(sample_snapshot)

        sandbox = next(v for v in violations.by_type["unmonitored_collections"] if v.entity_id == "1-c3")
        assert sandbox.workspace_id == "ws-2"
        assert sandbox.workspace_name == "Sandbox"
        assert sandbox.workspace_admin_email == "owner@corp.io"

    def test_severities(self, calculator, sample_snapshot):
        violations = calculator.calculate_violations(sample_snapshot)

        assert violations.by_type["untested_collections"][0].severity == "high"
        assert violations.by_type["naming_convention"][0].severity == "low"
        assert violations.by_type["untagged_workspaces"][0].entity_id == "ws-2"

    def test_orphaned_user(self, calculator, sample_snapshot):
        orphan = calculator.calculate_violations(sample_snapshot).by_type["orphaned_users"][0]

        assert orphan.entity_id == "3"
        assert orphan.entity_name == "cy"
        assert orphan.details == {"email": "cy@corp.io"}

    def test_no_monitors_means_no_unmonitored_violations(self, calculator, sample_snapshot):
        sample_snapshot.monitors = []

        violations = calculator.calculate_violations(sample_snapshot)

        assert violations.by_type["unmonitored_collections"] == []

    def test_no_groups_means_no_orphan_violations(self, calculator, sample_snapshot):
        sample_snapshot.user_groups = []

        violations = calculator.calculate_violations(sample_snapshot)

        assert violations.by_type["orphaned_users"] == []

    def test_workspace_without_fetched_tags_not_flagged(self, calculator, sample_snapshot):
        del sample_snapshot.workspaces[1]["tags"]

        violations = calculator.calculate_violations(sample_snapshot)

        assert violations.by_type["untagged_workspaces"] == []

    def test_unknown_owner_uses_default_admin_email(self, calculator):
        snapshot = PostmanSnapshot(collections=[{"uid": "1-x", "name": "bad name", "item": []}])

        violation = calculator.calculate_violations(snapshot).by_type["naming_convention"][0]

        assert violation.workspace_id == "unknown"
        assert violation.workspace_admin_email == DEFAULT_ADMIN_EMAIL


class TestCalculateMetrics:
    def test_metrics_bundle(self, calculator, sample_snapshot):
        metrics = calculator.calculate_metrics(sample_snapshot)

        assert metrics.timestamp.tzinfo is not None
        assert len(metrics.collection_metadata) == 3
        assert len(metrics.workspace_admins) == 2
        assert metrics.organizational_insights.total_collections == 3
        assert metrics.user_management.total_users == 3

    def test_completion_logged(self, calculator, sample_snapshot, mock_logger):
        calculator.calculate_metrics(sample_snapshot)

        messages = [c.args[0] for c in mock_logger.info.call_args_list]
        assert "Governance metrics calculation completed" in messages
