"""
Postman API Client

Async access to the Postman API for governance data collection.
Uses AsyncSecureHTTPClient for TLS enforcement, timeouts and pooling.

Usage:
    from governance_collector.collectors.postman_client import PostmanAPIClient

    client = PostmanAPIClient(api_key, config["postman"], logger)
    workspaces = await client.get_workspaces()
    snapshot = await client.collect_all_data()

Features:
    - Request spacing derived from postman.rate_limit.requests_per_minute
    - Retry with Retry-After on 429, exponential backoff on gateway/network errors
    - Fail fast on authentication errors (401, 403)

API Documentation:
    https://www.postman.com/postman/workspace/postman-public-workspace/documentation/12959542-c8142d51-e97c-46b6-bd77-52bb66712c9a
"""

import asyncio
import math
import time
from collections.abc import Mapping
from typing import Any

import httpx

from governance_collector import __version__
from governance_collector.async_http_client import AsyncSecureHTTPClient
from governance_collector.core.collection_metrics import get_current_tracker
from governance_collector.domain.governance import PostmanSnapshot
from governance_collector.utils.error_handling import log_and_continue, log_and_return_default

DEFAULT_BASE_URL = "https://api.getpostman.com"

# Gateway and timeout statuses worth retrying
RETRYABLE_STATUS_CODES = {408, 500, 502, 503, 504, 520, 521, 522, 523, 524}


class PostmanAPIError(Exception):
    """Raised when a Postman API request fails."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PostmanAuthError(PostmanAPIError):
    """Raised on 401/403 responses (invalid key or missing permissions)."""

    pass


def _limit(items: list[Any], maximum: Any) -> list[Any]:
    # -1 (or a missing limit) means no limit
    if not isinstance(maximum, int) or isinstance(maximum, bool) or maximum < 0:
        return items
    return items[:maximum]


class PostmanAPIClient:
    """
    Postman API client with rate limiting and retries.

    Requests are issued one at a time; consecutive requests are spaced at
    least ceil(60000 / requests_per_minute) milliseconds apart.
    """

    DEFAULT_RETRY_AFTER = 5  # seconds, when a 429 carries no Retry-After
    PROGRESS_INTERVAL = 10

    def __init__(self, api_key: str, config: Mapping[str, Any] | None, logger: Any, tracker: Any = None):
        """
        Initialize Postman API client.

        Args:
            api_key: Postman API key (PMAK-...)
            config: The ``postman`` configuration section
            logger: GovernanceLogger
            tracker: Run tracker (defaults to the active tracked run, if any)

        Raises:
            ValueError: If api_key is empty or requests_per_minute is not positive
        """
        if not api_key:
            raise ValueError("api_key is required")

        config = config or {}
        rate_limit = config.get("rate_limit") or {}
        requests_per_minute = rate_limit.get("requests_per_minute", 60)
        if not isinstance(requests_per_minute, (int, float)) or requests_per_minute <= 0:
            raise ValueError(f"requests_per_minute must be positive, got {requests_per_minute!r}")

        self.logger = logger
        self.base_url = str(config.get("base_url", DEFAULT_BASE_URL)).rstrip("/")
        self.rate_limit_delay = math.ceil(60000 / requests_per_minute) / 1000
        self.timeout = config.get("timeout_seconds", 30)
        self.max_retries = max(1, int(config.get("max_retries", 3)))
        self.retry_backoff = config.get("retry_backoff", 2)
        self.limits = config.get("limits") or {}
        self.collection_scope = config.get("collection_scope") or {}
        self.headers = self._build_headers(api_key)
        self.tracker = tracker
        self._last_request_time: float | None = None

    @staticmethod
    def _build_headers(api_key: str) -> dict[str, str]:
        return {
            "X-API-Key": api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": f"postman-governance-collector/{__version__}",
        }

    async def _enforce_rate_limit(self) -> None:
        now = time.monotonic()
        if self._last_request_time is not None:
            elapsed = now - self._last_request_time
            if elapsed < self.rate_limit_delay:
                await asyncio.sleep(self.rate_limit_delay - elapsed)
        self._last_request_time = time.monotonic()

    @classmethod
    def _retry_after_seconds(cls, response: Any) -> float:
        try:
            return float(response.headers.get("Retry-After", cls.DEFAULT_RETRY_AFTER))
        except (TypeError, ValueError):
            return cls.DEFAULT_RETRY_AFTER

    async def _request(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Execute a GET request with rate limiting and retries.

        Handles:
        - Rate limiting (429): waits Retry-After seconds, then retries
        - Gateway/timeout errors (408, 5xx): exponential backoff retry
        - Network errors: exponential backoff retry
        - Authentication errors (401, 403): fail fast

        Args:
            path: API path (e.g., "/workspaces")
            params: Optional query parameters

        Returns:
            Parsed JSON response

        Raises:
            PostmanAuthError: On 401/403
            PostmanAPIError: On other HTTP errors or when retries are exhausted
        """
        tracker = self.tracker or get_current_tracker()
        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            is_last_attempt = attempt == self.max_retries - 1
            await self._enforce_rate_limit()
            if tracker:
                tracker.record_api_call()

            try:
                async with AsyncSecureHTTPClient(
                    base_url=self.base_url, headers=self.headers, timeout=self.timeout
                ) as client:
                    response = await client.get(path, params=params)
                    response.raise_for_status()
                    try:
                        return response.json()  # type: ignore[no-any-return]
                    except ValueError as e:
                        raise PostmanAPIError(f"Invalid JSON from {path}: {e}") from e

            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code

                if status_code == 401:
                    self.logger.error("Authentication failed - invalid API key", {"path": path, "status": 401})
                    raise PostmanAuthError("Unauthorized. Please check your API key.", status_code) from e

                if status_code == 403:
                    self.logger.error("Access forbidden - insufficient permissions", {"path": path, "status": 403})
                    raise PostmanAuthError("Forbidden. Insufficient permissions.", status_code) from e

                if status_code == 429:
                    if tracker:
                        tracker.record_rate_limit_hit()
                    last_error = e
                    if is_last_attempt:
                        break
                    retry_after = self._retry_after_seconds(e.response)
                    self.logger.warn(
                        "Rate limit exceeded, waiting before retry",
                        {"path": path, "delay_seconds": retry_after, "attempt": attempt + 1},
                    )
                    await asyncio.sleep(retry_after)
                    continue

                if status_code in RETRYABLE_STATUS_CODES:
                    last_error = e
                    if is_last_attempt:
                        break
                    if tracker:
                        tracker.record_retry()
                    backoff = self.retry_backoff**attempt
                    self.logger.warn(
                        f"Server error (HTTP {status_code}), retrying",
                        {"path": path, "delay_seconds": backoff, "attempt": attempt + 1},
                    )
                    await asyncio.sleep(backoff)
                    continue

                raise PostmanAPIError(f"HTTP {status_code} for {path}", status_code) from e

            except httpx.RequestError as e:
                last_error = e
                if is_last_attempt:
                    break
                if tracker:
                    tracker.record_retry()
                backoff = self.retry_backoff**attempt
                self.logger.warn(
                    "Network error encountered, retrying with exponential backoff",
                    {
                        "path": path,
                        "delay_seconds": backoff,
                        "attempt": attempt + 1,
                        "error": str(e),
                        "error_class": type(e).__name__,
                    },
                )
                await asyncio.sleep(backoff)

        status_code = None
        if isinstance(last_error, httpx.HTTPStatusError):
            status_code = last_error.response.status_code
        self.logger.error(
            "Postman API request failed after retries",
            {"path": path, "attempts": self.max_retries, "error": str(last_error)},
        )
        raise PostmanAPIError(
            f"Request to {path} failed after {self.max_retries} attempts: {last_error}", status_code
        ) from last_error

    # ==============================
    # Users
    # ==============================

    async def get_user_response(self) -> dict[str, Any]:
        """
        Get the authenticated user response.

        REST Endpoint: GET /me

        Returns:
            {"user": {"id": 1234, "username": "...", "email": "..."}, "operations": [...]}
        """
        return await self._request("/me")

    async def get_user(self) -> dict[str, Any]:
        response = await self.get_user_response()
        return response.get("user") or {}

    async def get_user_groups(self) -> list[dict[str, Any]]:
        """REST Endpoint: GET /groups (team plans only)"""
        response = await self._request("/groups")
        return response.get("data") or []

    async def get_team_users(self) -> list[dict[str, Any]]:
        """REST Endpoint: GET /users (team plans only)"""
        response = await self._request("/users")
        return response.get("data") or []

    # ==============================
    # Workspaces
    # ==============================

    async def get_workspaces(self) -> list[dict[str, Any]]:
        response = await self._request("/workspaces")
        return response.get("workspaces") or []

    async def get_workspace(self, workspace_id: str) -> dict[str, Any]:
        response = await self._request(f"/workspaces/{workspace_id}")
        return response.get("workspace") or {}

    async def get_workspace_tags(self, workspace_id: str) -> list[dict[str, Any]]:
        response = await self._request(f"/workspaces/{workspace_id}/tags")
        return response.get("tags") or []

    async def get_workspace_roles(self, workspace_id: str) -> dict[str, Any]:
        """
        Get workspace roles with a user → role mapping.

        REST Endpoint: GET /workspaces/{workspaceId}/roles

        Returns:
            {
                "roles": [{"id": "3", "name": "Admin", "users": [{"id": 12, ...}]}],
                "users": [12, ...],
                "user_role_mapping": {12: {"role": "Admin", "role_id": "3", "user": {...}}}
            }
        """
        response = await self._request(f"/workspaces/{workspace_id}/roles")
        roles = response.get("roles") or []

        user_ids: list[Any] = []
        user_role_mapping: dict[Any, dict[str, Any]] = {}
        for role in roles:
            for user in role.get("users") or []:
                user_id = user.get("id") if isinstance(user, dict) else None
                if not user_id:
                    continue
                if user_id not in user_role_mapping:
                    user_ids.append(user_id)
                user_role_mapping[user_id] = {"role": role.get("name"), "role_id": role.get("id"), "user": user}

        self.logger.debug(
            "Workspace roles retrieved",
            {
                "workspace_id": workspace_id,
                "total_roles": len(roles),
                "total_users": len(user_ids),
                "role_names": [role.get("name") for role in roles],
            },
        )
        return {"roles": roles, "users": user_ids, "user_role_mapping": user_role_mapping}

    # ==============================
    # Collections
    # ==============================

    async def get_collections(self) -> list[dict[str, Any]]:
        response = await self._request("/collections")
        return response.get("collections") or []

    async def get_collection(self, collection_uid: str) -> dict[str, Any]:
        """
        Get a full collection (info, items, events).

        REST Endpoint: GET /collections/{collectionUid}
        """
        response = await self._request(f"/collections/{collection_uid}")
        return response.get("collection") or {}

    async def get_collection_forks(self, collection_uid: str) -> list[dict[str, Any]]:
        response = await self._request(f"/collections/{collection_uid}/forks")
        return response.get("data") or []

    # ==============================
    # Other entities
    # ==============================

    async def get_environments(self) -> list[dict[str, Any]]:
        response = await self._request("/environments")
        return response.get("environments") or []

    async def get_api_specs(self) -> list[dict[str, Any]]:
        response = await self._request("/apis")
        return response.get("apis") or []

    async def get_mocks(self) -> list[dict[str, Any]]:
        response = await self._request("/mocks")
        return response.get("mocks") or []

    async def get_monitors(self) -> list[dict[str, Any]]:
        response = await self._request("/monitors")
        return response.get("monitors") or []

    async def get_private_network_apis(self) -> list[dict[str, Any]]:
        response = await self._request("/network/private")
        return response.get("apis") or []

    # ==============================
    # Full collection pass
    # ==============================

    async def _optional_list(self, fetch: Any, description: str) -> list[dict[str, Any]]:
        try:
            return await fetch()
        except PostmanAPIError as e:
            return log_and_return_default(self.logger, e, {"status": e.status_code}, [], description)

    async def _enrich_workspace(self, snapshot: PostmanSnapshot, workspace: dict[str, Any]) -> None:
        workspace_id = workspace.get("id")
        detail = await self.get_workspace(workspace_id)
        workspace.update(detail)
        workspace.setdefault("members", [])

        if self.collection_scope.get("workspace_tags"):
            try:
                workspace["tags"] = await self.get_workspace_tags(workspace_id)
            except PostmanAPIError as e:
                log_and_continue(self.logger, e, {"workspace_id": workspace_id}, "Workspace tags fetch")
                workspace["tags"] = []

        try:
            roles = await self.get_workspace_roles(workspace_id)
        except PostmanAPIError as e:
            log_and_continue(self.logger, e, {"workspace_id": workspace_id}, "Workspace roles fetch")
            roles = {"roles": [], "users": [], "user_role_mapping": {}}

        workspace["roles"] = roles
        snapshot.workspace_roles.append({"workspace_id": workspace_id, "workspace_name": workspace.get("name"), **roles})

    async def _enrich_collection(self, collection: dict[str, Any]) -> None:
        collection_uid = collection.get("uid")
        detail = await self.get_collection(collection_uid)
        collection.update(detail)

        try:
            collection["forks"] = await self.get_collection_forks(collection_uid)
        except PostmanAPIError as e:
            log_and_continue(self.logger, e, {"collection_uid": collection_uid}, "Collection forks fetch")
            collection["forks"] = []

    async def collect_all_data(self) -> PostmanSnapshot:
        """
        Fetch every entity needed for governance calculation.

        Workspace and collection details are merged into their summary
        records. Failures on individual workspaces or collections are logged
        and skipped; failures on the top-level listings abort the pass.

        Returns:
            PostmanSnapshot

        Raises:
            PostmanAPIError: If a required listing cannot be fetched
        """
        start = time.monotonic()
        self.logger.info("Starting comprehensive data collection")

        try:
            snapshot = PostmanSnapshot()
            snapshot.user = await self.get_user_response()
            snapshot.workspaces = await self.get_workspaces()
            snapshot.collections = await self.get_collections()
            snapshot.environments = await self.get_environments()
            snapshot.api_specs = await self.get_api_specs()
            snapshot.user_groups = await self._optional_list(self.get_user_groups, "User groups fetch")
            snapshot.team_users = await self._optional_list(self.get_team_users, "Team users fetch")
            snapshot.mocks = await self.get_mocks()
            snapshot.monitors = await self.get_monitors()

            for workspace in _limit(snapshot.workspaces, self.limits.get("max_workspaces")):
                try:
                    await self._enrich_workspace(snapshot, workspace)
                except PostmanAPIError as e:
                    log_and_continue(self.logger, e, {"workspace_id": workspace.get("id")}, "Workspace detail fetch")

            collections_to_analyze = _limit(snapshot.collections, self.limits.get("max_collection_analysis"))
            self.logger.info(
                "Starting detailed collection analysis",
                {
                    "total_collections": len(snapshot.collections),
                    "collections_to_analyze": len(collections_to_analyze),
                },
            )

            for index, collection in enumerate(collections_to_analyze):
                if index and index % self.PROGRESS_INTERVAL == 0:
                    self.logger.info(
                        "Collection analysis progress",
                        {"analyzed": index, "total": len(collections_to_analyze)},
                    )
                try:
                    await self._enrich_collection(collection)
                except PostmanAPIError as e:
                    log_and_continue(
                        self.logger, e, {"collection_uid": collection.get("uid")}, "Collection detail fetch"
                    )

            if self.collection_scope.get("private_apis"):
                snapshot.private_network_apis = await self._optional_list(
                    self.get_private_network_apis, "Private network APIs fetch"
                )

        except PostmanAPIError as e:
            self.logger.error(
                "Data collection failed",
                {"error": str(e), "duration_ms": round((time.monotonic() - start) * 1000)},
            )
            raise

        self.logger.info(
            "Data collection completed",
            {
                "duration_ms": round((time.monotonic() - start) * 1000),
                "workspaces": len(snapshot.workspaces),
                "collections": len(snapshot.collections),
                "environments": len(snapshot.environments),
                "user_groups": len(snapshot.user_groups),
                "monitors": len(snapshot.monitors),
                "mocks": len(snapshot.mocks),
            },
        )
        return snapshot
