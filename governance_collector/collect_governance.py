#!/usr/bin/env python3
"""
Postman Governance Collector - entry point

Runs one governance collection cycle: fetch Postman data, compute scores and
violations, persist them to SQLite. Scheduling is left to cron / the
container scheduler, which invokes this module on collection.schedule.

Usage:
    python -m governance_collector.collect_governance --config config/governance-collector.yml
    python -m governance_collector.collect_governance --health-check
    python -m governance_collector.collect_governance --backup
    python -m governance_collector.collect_governance --init-db

Exit codes:
    0 - success (or healthy, for --health-check)
    1 - failure
"""

import argparse
import asyncio
import json
import os
import sys
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from governance_collector import __version__
from governance_collector.collectors.postman_client import PostmanAPIClient, PostmanAPIError, PostmanAuthError
from governance_collector.config_loader import ConfigurationError, load_config
from governance_collector.core.collection_metrics import CollectionRunTracker, track_collection_run
from governance_collector.core.logging_config import GovernanceLogger, create_logger
from governance_collector.database import DatabaseError, DatabaseManager
from governance_collector.governance.calculator import GovernanceCalculator
from governance_collector.health import HealthChecker
from governance_collector.secure_config import DEFAULT_SECRET_PATH, load_postman_api_key
from governance_collector.utils.error_handling import log_and_continue

RUN_NAME = "governance"


class GovernanceCollectorApp:
    """
    Wires configuration, logging, storage and the Postman client together.

    Components are created lazily so --init-db and --backup never need an
    API key.

    Args:
        config: Validated configuration (from load_config)
        logger: GovernanceLogger
        secret_path: Docker secret holding the Postman API key
        environ: Environment snapshot used for POSTMAN_API_KEY
    """

    def __init__(
        self,
        config: Mapping[str, Any],
        logger: GovernanceLogger,
        secret_path: str | os.PathLike = DEFAULT_SECRET_PATH,
        environ: Mapping[str, str] | None = None,
    ):
        self.config = config
        self.logger = logger
        self.secret_path = secret_path
        self.environ = environ
        self.db: DatabaseManager | None = None
        self.client: PostmanAPIClient | None = None

    def initialize_database(self) -> DatabaseManager:
        if self.db is None:
            db = DatabaseManager(self.config["database"], self.logger)
            db.initialize()
            self.db = db
        return self.db

    def get_client(self) -> PostmanAPIClient:
        if self.client is None:
            credentials = load_postman_api_key(self.secret_path, self.environ)
            self.logger.info(
                "Postman API key loaded", {"source": credentials.source, "key": credentials.masked_key}
            )
            self.client = PostmanAPIClient(credentials.api_key, self.config["postman"], self.logger)
        return self.client

    def _record_run_stats(self, tracker: CollectionRunTracker) -> None:
        if self.db is None:
            return
        try:
            self.db.set_metadata("last_run_stats", tracker.to_dict())
        except DatabaseError as e:
            log_and_continue(self.logger, e, {"run": tracker.run_name}, "Run statistics write")

    async def run_collection(self) -> str:
        """
        Perform one full collection cycle.

        Returns:
            Run id of the stored metrics

        Raises:
            ConfigurationError: If the API key is missing or invalid
            PostmanAPIError: If required Postman data cannot be fetched
            DatabaseError: If results cannot be stored
        """
        self.logger.info("Starting governance data collection", {"version": __version__})
        tracker: CollectionRunTracker | None = None

        try:
            db = self.initialize_database()
            client = self.get_client()
            calculator = GovernanceCalculator(self.config["governance"], self.logger)

            with track_collection_run(RUN_NAME, self.logger) as tracker:
                snapshot = await client.collect_all_data()
                tracker.workspace_count = len(snapshot.workspaces)
                tracker.collection_count = len(snapshot.collections)

                metrics = calculator.calculate_metrics(snapshot)
                violations = calculator.calculate_violations(snapshot)
                run_id = db.store_metrics(metrics, violations)

        except Exception as e:
            if isinstance(e, PostmanAuthError):
                self.logger.audit("authentication_failed", {"status": e.status_code, "error": str(e)})
            self.logger.audit("collection_failed", {"error": str(e), "error_type": type(e).__name__})
            if tracker is not None:
                self._record_run_stats(tracker)
            raise

        db.set_metadata(
            "last_collection",
            {
                "run_id": run_id,
                "timestamp": datetime.now(UTC).isoformat(),
                "overall_score": round(metrics.overall_score, 2),
                "compliance_status": metrics.compliance_status,
                "violations": violations.total,
            },
        )
        self._record_run_stats(tracker)

        self.logger.audit(
            "collection_completed",
            {
                "run_id": run_id,
                "overall_score": round(metrics.overall_score, 2),
                "violations": violations.counts(),
            },
        )
        self.logger.info(
            "Governance data collection completed",
            {
                "run_id": run_id,
                "overall_score": round(metrics.overall_score, 2),
                "compliance_status": metrics.compliance_status,
                "total_violations": violations.total,
            },
        )
        return run_id

    async def run_health_check(self) -> dict[str, Any]:
        """Run health checks; the API check is skipped when no key is available"""
        db = self.initialize_database()
        try:
            client = self.get_client()
        except ConfigurationError as e:
            log_and_continue(self.logger, e, {}, "Postman client setup for health check")
            client = None

        checker = HealthChecker(db, client, self.config.get("health"), self.logger)
        return await checker.check_health()

    def run_backup(self) -> Path:
        return self.initialize_database().backup()

    def close(self) -> None:
        if self.db is not None:
            self.db.close()
            self.db = None


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Collect Postman governance metrics into SQLite")
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Configuration file (default: $CONFIG_PATH or /app/config/governance-collector.yml)",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--health-check", action="store_true", help="Run health checks and exit")
    mode.add_argument("--backup", action="store_true", help="Back up the database and exit")
    mode.add_argument("--init-db", action="store_true", help="Create the database schema and exit")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1

    logger = create_logger(config)
    app = GovernanceCollectorApp(config, logger)

    try:
        if args.init_db:
            app.initialize_database()
            logger.info("Database schema ready", {"path": config["database"]["path"]})
            return 0

        if args.backup:
            app.run_backup()
            return 0

        if args.health_check:
            result = asyncio.run(app.run_health_check())
            print(json.dumps(result, indent=2))
            return 0 if result["overall"] == "healthy" else 1

        asyncio.run(app.run_collection())
        return 0

    except (ConfigurationError, PostmanAPIError, DatabaseError) as e:
        logger.error("Governance collector failed", {"error": str(e), "error_type": type(e).__name__})
        return 1
    finally:
        app.close()
        logger.close()


if __name__ == "__main__":
    sys.exit(main())
