"""Tests for the Secret Manager client.

Uses unittest.mock to mock the Secret Manager API.
"""

import os
from unittest.mock import MagicMock, patch

from eew_relay.shell.secret_manager_client import (
    SecretManagerClient,
    SecretManagerConfig,
    get_secret_manager_client,
)


def make_client(secret_value="s3cret"):
    api = MagicMock()
    api.access_secret_version.return_value.payload.data = secret_value.encode("UTF-8")
    client = SecretManagerClient(SecretManagerConfig(project_id="eew-project"))
    client._client = api
    return client, api


class TestGetSecret:
    """Tests for SecretManagerClient.get_secret()."""

    def test_fetches_latest_version(self):
        client, api = make_client()

        assert client.get_secret("misskey-token") == "s3cret"

        request = api.access_secret_version.call_args[1]["request"]
        assert request["name"] == "projects/eew-project/secrets/misskey-token/versions/latest"

    def test_api_error_returns_none(self):
        client, api = make_client()
        api.access_secret_version.side_effect = RuntimeError("permission denied")

        assert client.get_secret("misskey-token") is None


class TestResolve:
    """Tests for SecretManagerClient.resolve()."""

    def test_secret_placeholder(self):
        client, _ = make_client("token-value")
        assert client.resolve("${secret:misskey-token}") == "token-value"

    def test_secret_placeholder_with_version(self):
        client, api = make_client()

        client.resolve("${secret:misskey-token:3}")

        request = api.access_secret_version.call_args[1]["request"]
        assert request["name"].endswith("/versions/3")

    def test_unresolvable_secret_left_unchanged(self):
        client, api = make_client()
        api.access_secret_version.side_effect = RuntimeError("not found")

        assert client.resolve("${secret:missing}") == "${secret:missing}"

    def test_env_placeholder(self):
        client, api = make_client()

        with patch.dict(os.environ, {"MISSKEY_HOST": "misskey.io"}):
            assert client.resolve("${MISSKEY_HOST}") == "misskey.io"

        api.access_secret_version.assert_not_called()

    def test_plain_value(self):
        client, _ = make_client()
        assert client.resolve("misskey.io") == "misskey.io"


class TestGetSecretManagerClient:
    """Tests for get_secret_manager_client()."""

    def test_none_without_project(self):
        with patch.dict(os.environ, {}, clear=True):
            assert get_secret_manager_client() is None

    def test_uses_gcp_project(self):
        with patch.dict(os.environ, {"GCP_PROJECT": "eew-project"}, clear=True):
            client = get_secret_manager_client()
        assert client.config.project_id == "eew-project"

    def test_falls_back_to_google_cloud_project(self):
        with patch.dict(os.environ, {"GOOGLE_CLOUD_PROJECT": "other"}, clear=True):
            client = get_secret_manager_client()
        assert client.config.project_id == "other"
