"""
Domain Models - Type-safe data structures for governance data

Usage:
    from governance_collector.domain import GovernanceMetrics, PostmanSnapshot, Violation
"""

from .governance import (
    SEVERITY_ORDER,
    VIOLATION_TYPES,
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

__all__ = [
    "PostmanSnapshot",
    "EndpointAnalysis",
    "DocumentationCoverage",
    "TestCoverage",
    "MonitoringCoverage",
    "OrganizationStructure",
    "UserManagement",
    "OrganizationalInsights",
    "CollectionMetadata",
    "WorkspaceAdmin",
    "GovernanceMetrics",
    "Violation",
    "GovernanceViolations",
    "VIOLATION_TYPES",
    "SEVERITY_ORDER",
]
