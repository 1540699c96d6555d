"""
Async Secure HTTP Client Wrapper

Async HTTP access for the Postman API with enforced TLS verification,
timeouts and bounded connection pooling. Built on httpx.

Usage:
    from governance_collector.async_http_client import AsyncSecureHTTPClient

    async with AsyncSecureHTTPClient(base_url="https://api.getpostman.com", headers=headers) as client:
        response = await client.get("/workspaces")

Security Features:
    - SSL verification always enabled (verify=True)
    - Default 30-second timeout on all requests
    - Redirects capped at MAX_REDIRECTS
    - Connection pooling with keep-alive
"""

from typing import Any

import httpx


class AsyncSecureHTTPClient:
    """
    Async HTTP client with enforced SSL verification and connection pooling.

    Features:
    - Context manager for automatic connection cleanup
    - Optional base URL and default headers
    - HTTP/2 support
    - Enforced SSL verification and request timeouts
    """

    DEFAULT_TIMEOUT = 30  # seconds
    DEFAULT_MAX_CONNECTIONS = 10
    DEFAULT_MAX_KEEPALIVE = 5
    MAX_REDIRECTS = 3

    def __init__(
        self,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        max_keepalive_connections: int = DEFAULT_MAX_KEEPALIVE,
        http2: bool = True,
    ):
        """
        Initialize async HTTP client.

        Args:
            base_url: Prefix for relative request paths
            headers: Headers sent with every request
            timeout: Default timeout in seconds (default: 30)
            max_connections: Maximum number of concurrent connections (default: 10)
            max_keepalive_connections: Max persistent connections (default: 5)
            http2: Enable HTTP/2 support (default: True)
        """
        self.base_url = base_url
        self.headers = dict(headers or {})
        self.limits = httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_keepalive_connections)
        self.timeout = httpx.Timeout(timeout)
        self.http2 = http2
        self.client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "AsyncSecureHTTPClient":
        """Context manager entry - create async client"""
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            limits=self.limits,
            timeout=self.timeout,
            verify=True,  # CRITICAL: Force SSL verification
            http2=self.http2,
            follow_redirects=True,
            max_redirects=self.MAX_REDIRECTS,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Context manager exit - close connections"""
        if self.client:
            await self.client.aclose()
            self.client = None

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        """
        Async GET request with SSL verification enforced.

        Args:
            url: Absolute URL or path relative to base_url
            **kwargs: Additional arguments to pass to httpx.AsyncClient.get()

        Returns:
            httpx.Response: HTTP response
        """
        if not self.client:
            raise RuntimeError("Client not initialized. Use 'async with AsyncSecureHTTPClient()' context manager")

        return await self.client.get(url, **kwargs)
