"""Secret Manager Client - Imperative Shell.

This module resolves secret placeholders in configuration values
(typically the Misskey access token) from Google Cloud Secret Manager.
All I/O is contained here.
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Optional

from google.cloud import secretmanager


logger = logging.getLogger(__name__)


# ${secret:name} or ${secret:name:version}
SECRET_PLACEHOLDER = re.compile(r"^\$\{secret:([A-Za-z0-9_-]+)(?::([A-Za-z0-9]+))?\}$")

# ${ENV_VAR}
ENV_PLACEHOLDER = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$")


@dataclass
class SecretManagerConfig:
    """Configuration for Secret Manager client.

    Attributes:
        project_id: GCP project that owns the secrets
    """
    project_id: str


class SecretManagerClient:
    """Resolves configuration placeholders against Secret Manager.

    This is part of the imperative shell - it handles secret I/O.
    """

    def __init__(self, config: SecretManagerConfig) -> None:
        self.config = config
        self._client: Optional[secretmanager.SecretManagerServiceClient] = None

    @property
    def client(self) -> secretmanager.SecretManagerServiceClient:
        """Lazy initialization of the Secret Manager API client."""
        if self._client is None:
            self._client = secretmanager.SecretManagerServiceClient()
        return self._client

    def get_secret(self, secret_name: str, version: str = "latest") -> Optional[str]:
        """Fetch a secret value.

        This method performs I/O.

        Returns:
            Secret value, or None if it could not be read
        """
        name = f"projects/{self.config.project_id}/secrets/{secret_name}/versions/{version}"

        try:
            response = self.client.access_secret_version(request={"name": name})
        except Exception as e:
            logger.error("Failed to fetch secret %s: %s", secret_name, str(e))
            return None

        logger.info("Fetched secret: %s", secret_name)
        return response.payload.data.decode("UTF-8")

    def resolve(self, value: str) -> str:
        """Resolve a ${secret:name[:version]} or ${ENV_VAR} placeholder.

        Values without a placeholder, and placeholders that cannot be
        resolved, are returned unchanged.
        """
        secret_match = SECRET_PLACEHOLDER.match(value)
        if secret_match:
            name, version = secret_match.groups()
            secret = self.get_secret(name, version or "latest")
            return secret if secret is not None else value

        env_match = ENV_PLACEHOLDER.match(value)
        if env_match:
            env_value = os.environ.get(env_match.group(1))
            if env_value:
                return env_value
            logger.warning("Environment variable %s not set", env_match.group(1))

        return value


def get_secret_manager_client() -> Optional[SecretManagerClient]:
    """Create a client if a GCP project is configured.

    Returns None for local development (no GCP_PROJECT or
    GOOGLE_CLOUD_PROJECT set).
    """
    project_id = os.environ.get("GCP_PROJECT") or os.environ.get("GOOGLE_CLOUD_PROJECT")
    if not project_id:
        return None
    return SecretManagerClient(SecretManagerConfig(project_id=project_id))
