"""
Governance metrics store (SQLite).

Persists one row of headline metrics per collection run plus the run's
violations, workspace admins and per-collection metadata. The dashboard reads
the same database file directly, so column names are part of the external
interface.

Usage:
    db = DatabaseManager(config["database"], logger)
    db.initialize()
    run_id = db.store_metrics(metrics, violations)
    summary = db.get_latest_metrics_summary()
"""

import json
import re
import sqlite3
import time
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from governance_collector.domain.governance import GovernanceMetrics, GovernanceViolations
from governance_collector.utils.error_handling import log_and_raise

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
BACKUP_PREFIX = "governance_"

# Allowed PRAGMA values; anything else is rejected before reaching SQL
PRAGMA_CHOICES = {
    "synchronous": {"OFF", "NORMAL", "FULL", "EXTRA"},
    "temp_store": {"DEFAULT", "FILE", "MEMORY"},
    "journal_mode": {"DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"},
}

TREND_METRICS = frozenset(
    {
        "overall_score",
        "documentation_score",
        "testing_score",
        "monitoring_score",
        "organization_score",
        "total_workspaces",
        "total_collections",
        "total_users",
        "total_forks",
        "total_postbot_uses",
        "total_mocks",
        "total_monitors",
        "orphaned_users",
        "user_groups",
        "collections_without_specs",
        "documented_endpoints",
        "total_endpoints",
        "tested_endpoints",
    }
)

SUMMARY_DEFAULTS = {
    "avg_overall_score": 0,
    "avg_documentation_score": 0,
    "avg_testing_score": 0,
    "avg_monitoring_score": 0,
    "avg_organization_score": 0,
    "total_workspaces": 0,
    "total_collections": 0,
    "total_users": 0,
    "total_forks": 0,
    "total_postbot_uses": 0,
    "total_mocks": 0,
    "total_monitors": 0,
    "orphaned_users": 0,
    "collections_without_specs": 0,
}

SCHEMA = """
    CREATE TABLE IF NOT EXISTS governance_metrics (
        id                        INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp                 DATETIME DEFAULT CURRENT_TIMESTAMP,
        collection_id             TEXT    NOT NULL,
        overall_score             REAL    NOT NULL,
        documentation_score       REAL    NOT NULL,
        testing_score             REAL    NOT NULL,
        monitoring_score          REAL    NOT NULL,
        organization_score        REAL    NOT NULL,
        compliance_status         TEXT,
        total_workspaces          INTEGER NOT NULL,
        total_collections         INTEGER NOT NULL,
        total_users               INTEGER NOT NULL,
        total_forks               INTEGER NOT NULL,
        total_postbot_uses        INTEGER NOT NULL,
        total_mocks               INTEGER NOT NULL DEFAULT 0,
        total_monitors            INTEGER NOT NULL DEFAULT 0,
        orphaned_users            INTEGER NOT NULL,
        user_groups               INTEGER NOT NULL,
        collections_without_specs INTEGER NOT NULL,
        documented_endpoints      INTEGER NOT NULL,
        total_endpoints           INTEGER NOT NULL,
        tested_endpoints          INTEGER NOT NULL,
        team_workspaces           INTEGER NOT NULL,
        private_workspaces        INTEGER NOT NULL,
        raw_metrics               TEXT
    );

    CREATE TABLE IF NOT EXISTS governance_violations (
        id                    INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp             DATETIME DEFAULT CURRENT_TIMESTAMP,
        collection_id         TEXT NOT NULL,
        violation_type        TEXT NOT NULL,
        entity_id             TEXT NOT NULL,
        entity_name           TEXT NOT NULL,
        workspace_id          TEXT,
        workspace_name        TEXT,
        severity              TEXT NOT NULL,
        description           TEXT NOT NULL,
        workspace_admin_email TEXT
    );

    CREATE TABLE IF NOT EXISTS workspace_admins (
        id             INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp      DATETIME DEFAULT CURRENT_TIMESTAMP,
        workspace_id   TEXT NOT NULL,
        workspace_name TEXT NOT NULL,
        admin_user_id  TEXT NOT NULL,
        admin_email    TEXT NOT NULL,
        admin_name     TEXT NOT NULL,
        UNIQUE (workspace_id, admin_user_id)
    );

    CREATE TABLE IF NOT EXISTS collection_metadata (
        id                   INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp            DATETIME DEFAULT CURRENT_TIMESTAMP,
        collection_id        TEXT    NOT NULL,
        collection_name      TEXT    NOT NULL,
        workspace_id         TEXT    NOT NULL,
        workspace_name       TEXT    NOT NULL,
        has_specification    BOOLEAN NOT NULL,
        endpoint_count       INTEGER NOT NULL,
        documented_endpoints INTEGER NOT NULL,
        tested_endpoints     INTEGER NOT NULL,
        fork_count           INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS system_metadata (
        key        TEXT PRIMARY KEY,
        value      TEXT NOT NULL,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    );

    CREATE INDEX IF NOT EXISTS idx_governance_timestamp     ON governance_metrics (timestamp);
    CREATE INDEX IF NOT EXISTS idx_governance_collection_id ON governance_metrics (collection_id);
    CREATE INDEX IF NOT EXISTS idx_violations_timestamp     ON governance_violations (timestamp);
    CREATE INDEX IF NOT EXISTS idx_violations_collection_id ON governance_violations (collection_id);
    CREATE INDEX IF NOT EXISTS idx_violations_type          ON governance_violations (violation_type);
    CREATE INDEX IF NOT EXISTS idx_violations_severity      ON governance_violations (severity);
    CREATE INDEX IF NOT EXISTS idx_admins_workspace_id      ON workspace_admins (workspace_id);
    CREATE INDEX IF NOT EXISTS idx_admins_email             ON workspace_admins (admin_email);
    CREATE INDEX IF NOT EXISTS idx_collections_collection_id ON collection_metadata (collection_id);
    CREATE INDEX IF NOT EXISTS idx_collections_workspace_id ON collection_metadata (workspace_id);
    CREATE INDEX IF NOT EXISTS idx_collections_timestamp    ON collection_metadata (timestamp);
"""


class DatabaseError(Exception):
    """Raised when the governance database cannot be opened or written."""

    pass


def _format_timestamp(value: datetime | str) -> str:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.strftime(TIMESTAMP_FORMAT)
    return value


def _parse_period_days(period: str) -> int:
    match = re.fullmatch(r"(\d+)d", period or "")
    if not match or int(match.group(1)) <= 0:
        raise ValueError(f"Invalid trend period: {period!r} (expected e.g. '7d')")
    return int(match.group(1))


def generate_run_id() -> str:
    """Unique id for one collection run, e.g. collection_1718000000000_3f9a1c2b7"""
    return f"collection_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class DatabaseManager:
    """
    SQLite access for governance metrics.

    Args:
        config: The ``database`` configuration section
        logger: GovernanceLogger
    """

    def __init__(self, config: Mapping[str, Any], logger: Any):
        self.config = config
        self.logger = logger
        self.path = str(config["path"])
        self.conn: sqlite3.Connection | None = None

    # ---------------------------------------------------------------------------
    # Connection lifecycle
    # ---------------------------------------------------------------------------

    def initialize(self) -> None:
        """
        Open the database, apply pragmas and create the schema (idempotent).

        Raises:
            DatabaseError: If the file cannot be opened or the schema applied
        """
        try:
            if self.path != ":memory:":
                db_dir = Path(self.path).parent
                if not db_dir.exists():
                    db_dir.mkdir(parents=True, exist_ok=True)
                    self.logger.info("Created database directory", {"path": str(db_dir)})

            self.conn = sqlite3.connect(self.path)
            self.conn.row_factory = sqlite3.Row
            self._configure_pragmas()
            self.conn.executescript(SCHEMA)
            self.conn.commit()

        except (sqlite3.Error, OSError, ValueError) as e:
            self.close()
            error = DatabaseError(f"Failed to initialize database: {e}")
            error.__cause__ = e
            log_and_raise(self.logger, error, {"path": self.path}, "Database initialization")

        self.logger.info(
            "Database initialized successfully", {"path": self.path, "wal_mode": self.config.get("wal_mode", False)}
        )

    def _configure_pragmas(self) -> None:
        settings = self.config.get("pragma_settings") or {}
        statements = []

        for name in ("synchronous", "temp_store", "journal_mode"):
            if name in settings:
                value = str(settings[name]).upper()
                if value not in PRAGMA_CHOICES[name]:
                    raise ValueError(f"Unsupported value for PRAGMA {name}: {settings[name]!r}")
                statements.append(f"PRAGMA {name} = {value}")

        if "cache_size" in settings:
            cache_size = settings["cache_size"]
            if not isinstance(cache_size, int) or isinstance(cache_size, bool):
                raise ValueError(f"PRAGMA cache_size must be an integer, got {cache_size!r}")
            statements.append(f"PRAGMA cache_size = {cache_size}")

        for statement in statements:
            self.conn.execute(statement)  # type: ignore[union-attr]

    def _connection(self) -> sqlite3.Connection:
        if self.conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first")
        return self.conn

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None
            self.logger.info("Database connection closed")

    def __enter__(self) -> "DatabaseManager":
        self.initialize()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def ping(self) -> bool:
        """Run SELECT 1; raises sqlite3.Error / DatabaseError when unusable"""
        row = self._connection().execute("SELECT 1").fetchone()
        return row is not None and row[0] == 1

    # ---------------------------------------------------------------------------
    # Writes
    # ---------------------------------------------------------------------------

    def store_metrics(self, metrics: GovernanceMetrics, violations: GovernanceViolations) -> str:
        """
        Store one run's metrics, violations, admins and collection metadata.

        Everything is written in a single transaction; on failure nothing is
        kept.

        Returns:
            The generated run id (stored in the collection_id columns)

        Raises:
            DatabaseError: If any insert fails
        """
        conn = self._connection()
        run_id = generate_run_id()
        timestamp = _format_timestamp(metrics.timestamp)

        try:
            with conn:
                self._insert_metrics(conn, run_id, timestamp, metrics)
                violation_count = self._insert_violations(conn, run_id, timestamp, violations)
                self._upsert_workspace_admins(conn, timestamp, metrics)
                self._insert_collection_metadata(conn, timestamp, metrics)
        except sqlite3.Error as e:
            self.logger.error("Failed to store metrics", {"error": str(e), "run_id": run_id})
            raise DatabaseError(f"Failed to store metrics: {e}") from e

        self.logger.info(
            "Metrics stored successfully",
            {
                "run_id": run_id,
                "violations_stored": violation_count,
                "collections_stored": len(metrics.collection_metadata),
            },
        )
        return run_id

    @staticmethod
    def _insert_metrics(conn: sqlite3.Connection, run_id: str, timestamp: str, metrics: GovernanceMetrics) -> None:
        insights = metrics.organizational_insights
        users = metrics.user_management
        conn.execute(
            """
            INSERT INTO governance_metrics (
                timestamp, collection_id, overall_score, documentation_score, testing_score,
                monitoring_score, organization_score, compliance_status, total_workspaces,
                total_collections, total_users, total_forks, total_postbot_uses, total_mocks,
                total_monitors, orphaned_users, user_groups, collections_without_specs,
                documented_endpoints, total_endpoints, tested_endpoints, team_workspaces,
                private_workspaces, raw_metrics
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                timestamp,
                run_id,
                metrics.overall_score,
                metrics.documentation_coverage.score,
                metrics.test_coverage.score,
                metrics.monitoring_coverage.score,
                metrics.organization_structure.score,
                metrics.compliance_status,
                insights.total_workspaces,
                insights.total_collections,
                users.total_users,
                insights.total_forks,
                users.total_postbot_uses,
                insights.total_mocks,
                insights.total_monitors,
                users.orphaned_users,
                users.total_user_groups,
                insights.collections_without_specs,
                metrics.documentation_coverage.documented_endpoints,
                metrics.documentation_coverage.total_endpoints,
                metrics.test_coverage.tested_endpoints,
                metrics.organization_structure.team_workspaces,
                metrics.organization_structure.private_workspaces,
                json.dumps(metrics.to_dict(), default=str),
            ),
        )

    @staticmethod
    def _insert_violations(
        conn: sqlite3.Connection, run_id: str, timestamp: str, violations: GovernanceViolations
    ) -> int:
        rows = [
            (
                timestamp,
                run_id,
                v.violation_type,
                str(v.entity_id) if v.entity_id is not None else "unknown",
                v.entity_name or "Unknown",
                v.workspace_id,
                v.workspace_name,
                v.severity or "medium",
                v.description or f"{v.violation_type} violation",
                v.workspace_admin_email,
            )
            for v in violations.all()
        ]
        conn.executemany(
            "INSERT INTO governance_violations (timestamp, collection_id, violation_type, entity_id, entity_name, "
            "workspace_id, workspace_name, severity, description, workspace_admin_email) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            rows,
        )
        return len(rows)

    @staticmethod
    def _upsert_workspace_admins(conn: sqlite3.Connection, timestamp: str, metrics: GovernanceMetrics) -> None:
        conn.executemany(
            "INSERT OR REPLACE INTO workspace_admins "
            "(timestamp, workspace_id, workspace_name, admin_user_id, admin_email, admin_name) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            [
                (timestamp, a.workspace_id, a.workspace_name or "", a.user_id, a.email, a.name)
                for a in metrics.workspace_admins
            ],
        )

    @staticmethod
    def _insert_collection_metadata(conn: sqlite3.Connection, timestamp: str, metrics: GovernanceMetrics) -> None:
        conn.executemany(
            "INSERT INTO collection_metadata (timestamp, collection_id, collection_name, workspace_id, "
            "workspace_name, has_specification, endpoint_count, documented_endpoints, tested_endpoints, fork_count) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                (
                    timestamp,
                    c.id,
                    c.name or "Unknown",
                    c.workspace_id or "unknown",
                    c.workspace_name or "Unknown Workspace",
                    int(c.has_specification),
                    c.endpoint_count,
                    c.documented_endpoints,
                    c.tested_endpoints,
                    c.fork_count,
                )
                for c in metrics.collection_metadata
            ],
        )

    def set_metadata(self, key: str, value: Any) -> None:
        """Store a system metadata value (non-strings are JSON-encoded)"""
        stored = value if isinstance(value, str) else json.dumps(value, default=str)
        conn = self._connection()
        try:
            with conn:
                conn.execute(
                    "INSERT INTO system_metadata (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
                    (key, stored),
                )
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to store metadata {key!r}: {e}") from e

    def get_metadata(self, key: str, default: Any = None) -> Any:
        row = self._connection().execute("SELECT value FROM system_metadata WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except ValueError:
            return row["value"]

    # ---------------------------------------------------------------------------
    # Queries
    # ---------------------------------------------------------------------------

    def _all(self, sql: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        return [dict(row) for row in self._connection().execute(sql, params).fetchall()]

    def get_historical_metrics(
        self, start: datetime | str, end: datetime | str, interval: str = "hour"
    ) -> list[dict[str, Any]]:
        """
        Average scores per hour (or per day) between two timestamps.

        Args:
            start: Inclusive lower bound (UTC)
            end: Inclusive upper bound (UTC)
            interval: "hour" or "day"
        """
        if interval not in ("hour", "day"):
            raise ValueError(f"interval must be 'hour' or 'day', got {interval!r}")
        bucket = "strftime('%Y-%m-%d', timestamp)" if interval == "day" else "strftime('%Y-%m-%d %H:00:00', timestamp)"

        return self._all(
            f"""
            SELECT
                {bucket} AS time_bucket,
                AVG(overall_score)       AS avg_overall_score,
                AVG(documentation_score) AS avg_documentation_score,
                AVG(testing_score)       AS avg_testing_score,
                AVG(monitoring_score)    AS avg_monitoring_score,
                AVG(organization_score)  AS avg_organization_score,
                COUNT(*)                 AS data_points
            FROM governance_metrics
            WHERE timestamp BETWEEN ? AND ?
            GROUP BY time_bucket
            ORDER BY time_bucket
            """,
            (_format_timestamp(start), _format_timestamp(end)),
        )

    def get_latest_metrics_summary(self) -> dict[str, Any]:
        """Headline numbers from the most recent run (zeros when empty)"""
        row = (
            self._connection()
            .execute(
                """
                SELECT
                    overall_score       AS avg_overall_score,
                    documentation_score AS avg_documentation_score,
                    testing_score       AS avg_testing_score,
                    monitoring_score    AS avg_monitoring_score,
                    organization_score  AS avg_organization_score,
                    total_workspaces, total_collections, total_users, total_forks,
                    total_postbot_uses, total_mocks, total_monitors, orphaned_users,
                    collections_without_specs, timestamp
                FROM governance_metrics
                ORDER BY timestamp DESC, id DESC
                LIMIT 1
                """
            )
            .fetchone()
        )
        return dict(row) if row is not None else dict(SUMMARY_DEFAULTS)

    def _latest_run_id(self) -> str | None:
        row = (
            self._connection()
            .execute("SELECT collection_id FROM governance_metrics ORDER BY timestamp DESC, id DESC LIMIT 1")
            .fetchone()
        )
        return row["collection_id"] if row else None

    def get_current_violations(self) -> list[dict[str, Any]]:
        """Violations of the most recent run, one row per (type, entity)"""
        run_id = self._latest_run_id()
        if run_id is None:
            return []
        return self._all(
            """
            SELECT
                violation_type,
                severity,
                COUNT(*)       AS count,
                entity_id,
                entity_name,
                workspace_name,
                description,
                MAX(timestamp) AS latest_occurrence
            FROM governance_violations
            WHERE collection_id = ?
            GROUP BY violation_type, entity_id
            ORDER BY violation_type, entity_name
            """,
            (run_id,),
        )

    def get_violation_summary(self) -> list[dict[str, Any]]:
        """Violation counts per type for the most recent run, largest first"""
        run_id = self._latest_run_id()
        if run_id is None:
            return []
        return self._all(
            """
            SELECT violation_type, COUNT(*) AS count
            FROM governance_violations
            WHERE collection_id = ?
            GROUP BY violation_type
            ORDER BY count DESC, violation_type
            """,
            (run_id,),
        )

    def get_detailed_violations(self, limit: int = 50) -> list[dict[str, Any]]:
        """
        Most recent run's violations with admin contact and suggested action,
        ordered by severity (critical first).
        """
        run_id = self._latest_run_id()
        if run_id is None:
            return []
        return self._all(
            """
            SELECT
                gv.violation_type,
                gv.entity_name,
                gv.workspace_name,
                gv.severity,
                gv.description,
                gv.workspace_admin_email,
                gv.timestamp,
                COALESCE(
                    (SELECT wa.admin_email FROM workspace_admins wa
                     WHERE wa.workspace_id = gv.workspace_id AND wa.admin_email != 'unknown'
                     ORDER BY wa.id LIMIT 1),
                    gv.workspace_admin_email,
                    'No admin found'
                ) AS admin_contact,
                CASE gv.violation_type
                    WHEN 'collections_without_specs' THEN 'Link the collection to an API specification'
                    WHEN 'missing_documentation'     THEN 'Document endpoints and add example responses'
                    WHEN 'untested_collections'      THEN 'Add test scripts to the collection requests'
                    WHEN 'unmonitored_collections'   THEN 'Set up a monitor for the collection'
                    WHEN 'naming_convention'         THEN 'Rename the collection to TEAM-DOMAIN-Name[STAGE]'
                    WHEN 'untagged_workspaces'       THEN 'Tag the workspace'
                    WHEN 'orphaned_users'            THEN 'Add the user to a user group'
                    ELSE gv.description
                END AS action_needed
            FROM governance_violations gv
            WHERE gv.collection_id = ?
              AND gv.entity_name IS NOT NULL
              AND gv.entity_name != ''
            ORDER BY
                CASE gv.severity
                    WHEN 'critical' THEN 1
                    WHEN 'high'     THEN 2
                    WHEN 'medium'   THEN 3
                    ELSE 4
                END,
                gv.id
            LIMIT ?
            """,
            (run_id, int(limit)),
        )

    def get_metric_trends(self, metric: str, period: str = "7d") -> list[dict[str, Any]]:
        """
        Daily averages of one governance_metrics column.

        Args:
            metric: Column name; must be one of TREND_METRICS
            period: Look-back window such as "7d" or "30d"

        Raises:
            ValueError: For an unknown metric or malformed period
        """
        if metric not in TREND_METRICS:
            raise ValueError(f"Unknown metric: {metric!r}")
        days = _parse_period_days(period)
        since = _format_timestamp(datetime.now(UTC) - timedelta(days=days))

        return self._all(
            f"""
            SELECT strftime('%Y-%m-%d', timestamp) AS date, AVG({metric}) AS value
            FROM governance_metrics
            WHERE timestamp >= ?
            GROUP BY date
            ORDER BY date
            """,
            (since,),
        )

    # ---------------------------------------------------------------------------
    # Backups
    # ---------------------------------------------------------------------------

    def backup(self, now: datetime | None = None) -> Path:
        """
        Copy the live database into database.backup.path and prune old copies.

        Uses the sqlite online backup API, so it is safe while the collector
        holds the connection open.

        Returns:
            Path of the new backup file

        Raises:
            DatabaseError: If the copy fails
        """
        conn = self._connection()
        backup_config = self.config.get("backup") or {}
        backup_dir = Path(backup_config.get("path") or Path(self.path).parent / "backups")
        retention_days = int(backup_config.get("retention_days", 30))
        now = now or datetime.now(UTC)

        target = backup_dir / f"{BACKUP_PREFIX}{now.strftime('%Y%m%d_%H%M%S')}.db"
        try:
            backup_dir.mkdir(parents=True, exist_ok=True)
            destination = sqlite3.connect(target)
            try:
                conn.backup(destination)
            finally:
                destination.close()
        except (sqlite3.Error, OSError) as e:
            self.logger.error("Database backup failed", {"error": str(e), "target": str(target)})
            raise DatabaseError(f"Failed to back up database: {e}") from e

        removed = self._prune_backups(backup_dir, retention_days, keep=target, now=now)
        self.logger.info("Database backup created", {"path": str(target), "pruned": removed})
        return target

    def _prune_backups(self, backup_dir: Path, retention_days: int, keep: Path, now: datetime) -> int:
        cutoff = now.timestamp() - retention_days * 86400
        removed = 0
        for candidate in backup_dir.glob(f"{BACKUP_PREFIX}*.db"):
            if candidate == keep:
                continue
            if candidate.stat().st_mtime < cutoff:
                candidate.unlink()
                removed += 1
        return removed
