"""
Secure Credential Management

Loads and validates the Postman API key used by the collector.

Usage:
    from governance_collector.secure_config import load_postman_api_key

    credentials = load_postman_api_key()
    client = PostmanAPIClient(credentials.api_key, config["postman"], logger)

Key sources (first match wins):
    1. Docker secret file (/run/secrets/postman_api_key)
    2. POSTMAN_API_KEY environment variable

Security Features:
    - Fail-fast on missing/invalid keys
    - Placeholder detection (e.g., "your_api_key")
    - Format validation (PMAK- prefix, minimum length)
    - Masked preview for logging, the raw key is never logged

Raises:
    ConfigurationError: If no valid API key is available
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from governance_collector.config_loader import ConfigurationError
from governance_collector.core.sanitizer import MASK_TOKEN

DEFAULT_SECRET_PATH = "/run/secrets/postman_api_key"
API_KEY_PREFIX = "PMAK-"
MIN_API_KEY_LENGTH = 20

PLACEHOLDERS = ("your_api_key", "your-api-key", "example", "placeholder", "xxx", "replace_me", "changeme")


@dataclass
class PostmanCredentials:
    """
    Validated Postman API credentials.
    """

    api_key: str = field(repr=False)
    source: str = "environment"

    def __post_init__(self):
        """Validate credentials after initialization."""
        self.api_key = (self.api_key or "").strip()
        self._validate()

    def _validate(self):
        """
        Validate the Postman API key.

        Raises:
            ConfigurationError: If the key is invalid
        """
        if not self.api_key:
            raise ConfigurationError("POSTMAN_API_KEY is required")

        lowered = self.api_key.lower()
        if any(placeholder in lowered for placeholder in PLACEHOLDERS):
            raise ConfigurationError("POSTMAN_API_KEY contains a placeholder value - please set a real API key")

        if not self.api_key.startswith(API_KEY_PREFIX):
            raise ConfigurationError(f"POSTMAN_API_KEY must start with {API_KEY_PREFIX}")

        if len(self.api_key) < MIN_API_KEY_LENGTH:
            raise ConfigurationError(
                f"POSTMAN_API_KEY appears invalid (too short: {len(self.api_key)} chars, expected >={MIN_API_KEY_LENGTH})"
            )

    @property
    def masked_key(self) -> str:
        """Log-safe preview: first 8 and last 4 characters."""
        return f"{self.api_key[:8]}{MASK_TOKEN}{self.api_key[-4:]}"


def load_postman_api_key(
    secret_path: str | os.PathLike = DEFAULT_SECRET_PATH,
    environ: Mapping[str, str] | None = None,
) -> PostmanCredentials:
    """
    Load the Postman API key from a Docker secret or the environment.

    Args:
        secret_path: Location of the Docker secret file
        environ: Environment snapshot (defaults to os.environ)

    Returns:
        PostmanCredentials: Validated credentials

    Raises:
        ConfigurationError: If no key is found or the key is invalid
    """
    environ = os.environ if environ is None else environ

    secret_file = Path(secret_path)
    if secret_file.is_file():
        try:
            api_key = secret_file.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Cannot read Postman API key secret {secret_file}: {e}") from e
        return PostmanCredentials(api_key=api_key, source="docker_secret")

    api_key = environ.get("POSTMAN_API_KEY")
    if api_key:
        return PostmanCredentials(api_key=api_key, source="environment")

    raise ConfigurationError(
        f"No Postman API key found. Mount the Docker secret at {secret_file} or set POSTMAN_API_KEY"
    )
