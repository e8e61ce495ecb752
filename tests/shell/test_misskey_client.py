"""Tests for the Misskey API client.

Uses the `responses` library to mock HTTP requests.
"""

import json

import pytest
import requests
import responses
from unittest.mock import Mock

from eew_relay.core.config import MisskeyConfig
from eew_relay.core.errors import SinkError
from eew_relay.core.sink import PostOptions
from eew_relay.shell.misskey_client import (
    MisskeyClient,
    MisskeyNote,
    MisskeyResponse,
    MisskeySink,
)


TEST_CONFIG = MisskeyConfig(host="misskey.example", token="test-token", max_retries=3)
NOTES_URL = "https://misskey.example/api/notes/create"
I_URL = "https://misskey.example/api/i"


@pytest.fixture
def sleeps():
    """Records retry delays instead of sleeping."""
    return []


@pytest.fixture
def client(sleeps):
    return MisskeyClient(TEST_CONFIG, sleep=sleeps.append)


class TestMisskeyNote:
    """Tests for MisskeyNote.to_payload()."""

    def test_payload_without_cw(self):
        payload = MisskeyNote(text="本文").to_payload()
        assert payload == {"text": "本文", "visibility": "public", "localOnly": False}

    def test_payload_with_cw(self):
        payload = MisskeyNote(text="本文", visibility="home", local_only=True, cw="地震").to_payload()
        assert payload["cw"] == "地震"
        assert payload["visibility"] == "home"
        assert payload["localOnly"] is True


class TestCreateNote:
    """Tests for MisskeyClient.create_note()."""

    @responses.activate
    def test_successful_post(self, client):
        responses.add(
            responses.POST,
            NOTES_URL,
            json={"createdNote": {"id": "9abc"}},
            status=200,
        )

        result = client.create_note(MisskeyNote(text="テスト"))

        assert result.success is True
        assert result.note_id == "9abc"
        assert result.error is None

    @responses.activate
    def test_sends_token_in_body(self, client):
        responses.add(responses.POST, NOTES_URL, json={"createdNote": {"id": "1"}}, status=200)

        client.create_note(MisskeyNote(text="テスト", cw="警報"))

        body = json.loads(responses.calls[0].request.body)
        assert body["i"] == "test-token"
        assert body["text"] == "テスト"
        assert body["cw"] == "警報"

    @responses.activate
    def test_auth_failure(self, client):
        responses.add(responses.POST, NOTES_URL, json={"error": {}}, status=401)

        result = client.create_note(MisskeyNote(text="テスト"))

        assert result.success is False
        assert result.status_code == 401
        assert "Authentication" in result.error

    @responses.activate
    def test_rate_limited(self, client):
        responses.add(responses.POST, NOTES_URL, json={"error": {}}, status=429)

        result = client.create_note(MisskeyNote(text="テスト"))

        assert result.status_code == 429
        assert result.error == "Rate limit exceeded"

    @responses.activate
    def test_server_error(self, client):
        responses.add(responses.POST, NOTES_URL, body="Internal Server Error", status=500)

        result = client.create_note(MisskeyNote(text="テスト"))

        assert result.success is False
        assert result.status_code == 500
        assert result.error == "Internal Server Error"

    @responses.activate
    def test_timeout(self, client):
        responses.add(responses.POST, NOTES_URL, body=requests.Timeout())

        result = client.create_note(MisskeyNote(text="テスト"))

        assert result.success is False
        assert result.status_code == 0
        assert result.error == "Request timed out"

    @responses.activate
    def test_connection_error(self, client):
        responses.add(responses.POST, NOTES_URL, body=requests.ConnectionError("refused"))

        result = client.create_note(MisskeyNote(text="テスト"))

        assert result.success is False
        assert "refused" in result.error

    @responses.activate
    def test_non_object_body(self, client):
        responses.add(responses.POST, NOTES_URL, json=["unexpected"], status=200)

        result = client.create_note(MisskeyNote(text="テスト"))

        assert result.success is False
        assert result.status_code == 200
        assert result.error == "Unexpected response body"

    @responses.activate
    def test_non_json_body(self, client):
        responses.add(responses.POST, NOTES_URL, body="<html>", status=200)

        result = client.create_note(MisskeyNote(text="テスト"))

        assert result.success is False
        assert result.error == "Unexpected response body"

    @responses.activate
    def test_created_note_not_an_object(self, client):
        responses.add(responses.POST, NOTES_URL, json={"createdNote": "9abc"}, status=200)

        result = client.create_note(MisskeyNote(text="テスト"))

        assert result.success is True
        assert result.note_id is None


class TestCreateNoteWithRetry:
    """Tests for MisskeyClient.create_note_with_retry()."""

    @responses.activate
    def test_retries_until_success(self, client, sleeps):
        responses.add(responses.POST, NOTES_URL, body="busy", status=503)
        responses.add(responses.POST, NOTES_URL, json={"createdNote": {"id": "ok"}}, status=200)

        result = client.create_note_with_retry(MisskeyNote(text="テスト"))

        assert result.success is True
        assert len(responses.calls) == 2
        assert sleeps == [2]

    @responses.activate
    def test_gives_up_after_max_retries(self, client, sleeps):
        responses.add(responses.POST, NOTES_URL, body="busy", status=503)

        result = client.create_note_with_retry(MisskeyNote(text="テスト"))

        assert result.success is False
        assert len(responses.calls) == 3
        assert sleeps == [2, 4]

    @responses.activate
    def test_auth_failure_not_retried(self, client, sleeps):
        responses.add(responses.POST, NOTES_URL, json={}, status=401)

        result = client.create_note_with_retry(MisskeyNote(text="テスト"))

        assert result.status_code == 401
        assert len(responses.calls) == 1
        assert sleeps == []


class TestConnection:
    """Tests for MisskeyClient.test_connection()."""

    @responses.activate
    def test_valid_token(self, client):
        responses.add(responses.POST, I_URL, json={"id": "user1", "username": "eew"}, status=200)
        assert client.test_connection() is True

    @responses.activate
    def test_invalid_token(self, client):
        responses.add(responses.POST, I_URL, json={"error": {}}, status=401)
        assert client.test_connection() is False

    @responses.activate
    def test_unreachable(self, client):
        responses.add(responses.POST, I_URL, body=requests.ConnectionError("down"))
        assert client.test_connection() is False

    @responses.activate
    def test_non_json_body(self, client):
        responses.add(responses.POST, I_URL, body="<html>", status=200)
        assert client.test_connection() is False

    @responses.activate
    def test_non_object_json_body(self, client):
        responses.add(responses.POST, I_URL, json=[{"id": "user1"}], status=200)
        assert client.test_connection() is False


class TestMisskeySink:
    """Tests for the async MisskeySink adapter."""

    @pytest.mark.asyncio
    async def test_post_returns_note_id(self):
        mock_client = Mock()
        mock_client.create_note_with_retry.return_value = MisskeyResponse(
            success=True, status_code=200, note_id="9abc"
        )
        sink = MisskeySink(mock_client)

        post_id = await sink.post(
            "本文",
            PostOptions(visibility="home", content_warning="地震", local_only=True),
        )

        assert post_id == "9abc"
        note = mock_client.create_note_with_retry.call_args[0][0]
        assert note.text == "本文"
        assert note.visibility == "home"
        assert note.cw == "地震"
        assert note.local_only is True

    @pytest.mark.asyncio
    async def test_post_failure_raises_sink_error(self):
        mock_client = Mock()
        mock_client.create_note_with_retry.return_value = MisskeyResponse(
            success=False, status_code=429, error="Rate limit exceeded"
        )
        sink = MisskeySink(mock_client)

        with pytest.raises(SinkError) as exc_info:
            await sink.post("本文", PostOptions())

        assert exc_info.value.status_code == 429
        assert "Rate limit" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_connectivity(self):
        mock_client = Mock()
        mock_client.test_connection.return_value = True

        assert await MisskeySink(mock_client).test_connectivity() is True
