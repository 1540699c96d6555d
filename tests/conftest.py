"""
Pytest configuration and shared fixtures

Provides sample configuration, loggers writing to temporary files, and a
Postman snapshot with known governance numbers.
"""

import copy
import itertools
import json
from pathlib import Path
from unittest.mock import Mock

import pytest
import yaml

from governance_collector.core.logging_config import GovernanceLogger, LoggingConfig
from governance_collector.domain.governance import PostmanSnapshot

# Syntactically valid, never a real key
TEST_API_KEY = "PMAK-0123456789abcdef0123456789abcdef-9f3e"

_logger_names = itertools.count()


# ===== Configuration Fixtures =====

BASE_CONFIG = {
    "collection": {"schedule": "0 */6 * * *"},
    "database": {
        "path": "/app/data/governance.db",
        "backup": {"retention_days": 30},
        "pragma_settings": {"synchronous": "NORMAL", "cache_size": 10000, "temp_store": "MEMORY"},
    },
    "api": {"port": 3001},
    "postman": {
        "base_url": "https://api.getpostman.com",
        "rate_limit": {"requests_per_minute": 120},
        "timeout_seconds": 30,
        "max_retries": 3,
        "retry_backoff": 2,
        "collection_scope": {"workspace_tags": True, "private_apis": False},
        "limits": {"max_collection_analysis": -1, "max_workspaces": -1},
    },
    "governance": {
        "weights": {"documentation": 0.30, "testing": 0.25, "monitoring": 0.25, "organization": 0.20},
        "thresholds": {
            "critical_compliance_score": 60,
            "warning_compliance_score": 80,
            "min_documentation_coverage": 80,
            "min_test_coverage": 70,
        },
    },
    "logging": {
        "level": "INFO",
        "format": "json",
        "destinations": {"console": True, "file": False},
        "security": {"mask_api_keys": True, "exclude_headers": ["authorization", "x-api-key"]},
    },
}


@pytest.fixture
def sample_config():
    """Provide a fresh, valid configuration dictionary"""
    return copy.deepcopy(BASE_CONFIG)


@pytest.fixture
def write_config(tmp_path):
    """Write a configuration mapping (or raw text) to a YAML file and return its path"""

    def _write(config, name="governance-collector.yml"):
        path = tmp_path / name
        if isinstance(config, str):
            path.write_text(config, encoding="utf-8")
        else:
            path.write_text(yaml.safe_dump(config), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def app_config(sample_config, tmp_path):
    """Configuration pointing database, backups and logs at tmp_path"""
    sample_config["database"]["path"] = str(tmp_path / "data" / "governance.db")
    sample_config["database"]["backup"]["path"] = str(tmp_path / "backups")
    sample_config["logging"]["destinations"] = {
        "console": False,
        "file": True,
        "file_path": str(tmp_path / "logs" / "collector.log"),
    }
    sample_config["security"] = {"audit": {"enabled": True}}
    return sample_config


# ===== Logging Fixtures =====


@pytest.fixture
def make_logger(tmp_path):
    """Factory for GovernanceLoggers writing to a file in tmp_path; closed at teardown"""
    created = []

    def _make(**overrides):
        options = {
            "console": False,
            "file": True,
            "file_path": str(tmp_path / "logs" / f"test-{len(created)}.log"),
        }
        options.update(overrides)
        logger = GovernanceLogger(LoggingConfig(**options), name=f"governance_collector.test.{next(_logger_names)}")
        created.append(logger)
        return logger

    yield _make

    for logger in created:
        logger.close()


def read_log_lines(path):
    """Read the lines written to a log file (call after logger.close())"""
    path = Path(path)
    if not path.exists():
        return []
    return [line for line in path.read_text(encoding="utf-8").splitlines() if line]


def read_log_entries(path):
    """Parse JSON log lines"""
    return [json.loads(line) for line in read_log_lines(path)]


@pytest.fixture
def mock_logger():
    """Mock exposing the GovernanceLogger interface"""
    logger = Mock()
    logger.debug = Mock()
    logger.info = Mock()
    logger.warn = Mock()
    logger.error = Mock()
    logger.audit = Mock()
    return logger


# ===== Postman Data Fixtures =====


def make_request_item(name, description=None, item_description=None, responses=0, test_script=None):
    """Build a Postman collection request item"""
    request = {"method": "GET", "url": f"https://api.test/{name}"}
    if description:
        request["description"] = description

    item = {"name": name, "request": request, "response": [{"name": "OK"}] * responses}
    if item_description:
        item["description"] = item_description
    if test_script is not None:
        item["event"] = [{"listen": "test", "script": {"exec": test_script}}]
    return item


@pytest.fixture
def sample_snapshot():
    """
    Snapshot with known governance numbers.

    3 endpoints (2 documented, 2 tested), 3 collections (1 monitored,
    1 linked to a spec, 2 properly named), 2 workspaces (1 private),
    3 team users of which 2 are in a group.
    """
    documented_tested = make_request_item(
        "list-orders", description="List orders", responses=1, test_script=["pm.test()"]
    )
    bare = make_request_item("create-order")
    item_level_docs = make_request_item(
        "refund", item_description="Refund an order", responses=2, test_script=["pm.expect(1).to.eql(1)"]
    )

    return PostmanSnapshot(
        user={
            "user": {
                "id": 1,
                "username": "owner",
                "fullName": "Team Owner",
                "email": "owner@corp.io",
                "operations": {"usage": {"postbot": {"monthly": 7}}},
            }
        },
        workspaces=[
            {
                "id": "ws-1",
                "name": "Payments",
                "type": "team",
                "collections": [{"id": "c-1", "uid": "1-c1"}, {"uid": "1-c2"}],
                "tags": [{"slug": "payments"}],
                "roles": {
                    "roles": [
                        {"id": "3", "name": "Admin", "users": [{"id": 1, "email": "admin@corp.io", "name": "Ada"}]},
                        {"id": "2", "name": "Editor", "users": [{"id": 2, "email": "bea@corp.io"}]},
                    ],
                    "users": [1, 2],
                    "user_role_mapping": {},
                },
            },
            {
                "id": "ws-2",
                "name": "Sandbox",
                "type": "private",
                "collections": [{"uid": "1-c3"}],
                "tags": [],
                "createdBy": 42,
            },
        ],
        collections=[
            {
                "uid": "1-c1",
                "name": "PAY-API-Orders[SPEC]",
                "owner": "1",
                "item": [{"name": "Orders", "item": [documented_tested, bare]}],
                "forks": [{"id": "f-1"}, {"id": "f-2"}],
            },
            {"uid": "1-c2", "name": "orders collection", "owner": "1", "item": [item_level_docs], "forks": []},
            {"uid": "1-c3", "name": "SBX-DEV-Tools[DEV]", "owner": "1", "item": []},
        ],
        environments=[{"id": "env-1", "name": "Production"}],
        api_specs=[{"id": "api-1", "name": "Orders API", "collections": [{"id": "1-c1"}]}],
        user_groups=[{"id": "g-1", "name": "Payments", "members": [1, 2]}],
        team_users=[
            {"id": 1, "username": "owner", "email": "owner@corp.io"},
            {"id": 2, "fullName": "Bea", "email": "bea@corp.io"},
            {"id": 3, "username": "cy", "email": "cy@corp.io"},
        ],
        mocks=[{"id": "mock-1"}],
        monitors=[{"id": "mon-1", "collectionUid": "1-c1"}],
        workspace_roles=[{"workspace_id": "ws-1", "workspace_name": "Payments", "users": [1, 2]}],
    )


@pytest.fixture
def log_lines():
    """Function reading raw lines from a log file"""
    return read_log_lines


@pytest.fixture
def log_entries():
    """Function reading parsed JSON entries from a log file"""
    return read_log_entries
