"""Tests for the concrete credential discoverers."""

import base64
import json
import sqlite3
from pathlib import Path
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import yaml

from llmusage.discovery import (
    AntigravityDiscovery,
    ClaudeDiscovery,
    CodexDiscovery,
    CopilotDiscovery,
    CursorDiscovery,
    WindsurfDiscovery,
)
from llmusage.discovery.antigravity import (
    make_token,
    parse_listening_ports,
    parse_process_line,
    split_token,
)
from llmusage.discovery.claude import decode_hex_if_needed, parse_credentials
from llmusage.discovery.copilot import (
    decode_keyring_value,
    fetch_github_username,
    read_hosts_token,
)
from llmusage.discovery.cursor import jwt_expiration
from llmusage.models import Service

KEYCHAIN = "llmusage.discovery.system.read_generic_password"
RUN_COMMAND = "llmusage.discovery.system.run_command"

CLAUDE_BLOB = json.dumps(
    {
        "claudeAiOauth": {
            "accessToken": "sk-ant-oat01",
            "refreshToken": "sk-ant-ort01",
            "expiresAt": 1767225600000,
        }
    }
)


def _state_db(path: Path, values: dict) -> Path:
    conn = sqlite3.connect(path)
    try:
        conn.execute("CREATE TABLE ItemTable (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
        conn.executemany("INSERT INTO ItemTable VALUES (?, ?)", list(values.items()))
        conn.commit()
    finally:
        conn.close()
    return path


def _jwt(claims: dict) -> str:
    def _b64(data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode().rstrip("=")

    return ".".join(
        [_b64(b'{"alg":"none"}'), _b64(json.dumps(claims).encode()), "sig"]
    )


# ---------------------------------------------------------------------------
# Claude
# ---------------------------------------------------------------------------


class TestClaude:
    def test_parse_credentials(self):
        token = parse_credentials(CLAUDE_BLOB)
        assert token.access_token == "sk-ant-oat01"
        assert token.refresh_token == "sk-ant-ort01"
        assert token.expires_at.year == 2026

    def test_parse_credentials_rejects_other_shapes(self):
        assert parse_credentials("not json") is None
        assert parse_credentials(json.dumps({"other": {}})) is None

    def test_decode_hex(self):
        encoded = CLAUDE_BLOB.encode().hex()
        assert decode_hex_if_needed(encoded) == CLAUDE_BLOB
        assert decode_hex_if_needed("0x" + encoded) == CLAUDE_BLOB
        assert decode_hex_if_needed(CLAUDE_BLOB) == CLAUDE_BLOB

    @pytest.mark.asyncio
    async def test_reads_credentials_file(self, tmp_path):
        path = tmp_path / ".credentials.json"
        path.write_text(CLAUDE_BLOB)

        with patch(KEYCHAIN, new=AsyncMock(return_value=None)) as keychain:
            results = await ClaudeDiscovery(credentials_path=path).discover()

        assert len(results) == 1
        assert results[0].source == "file"
        assert results[0].tokens[0].access_token == "sk-ant-oat01"
        keychain.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_falls_back_to_hex_keychain(self, tmp_path):
        keychain = AsyncMock(return_value=CLAUDE_BLOB.encode().hex())
        with patch(KEYCHAIN, new=keychain):
            results = await ClaudeDiscovery(tmp_path / "missing.json").discover()

        assert results[0].source == "keychain"
        assert results[0].tokens[0].access_token == "sk-ant-oat01"

    @pytest.mark.asyncio
    async def test_nothing_found(self, tmp_path):
        with patch(KEYCHAIN, new=AsyncMock(return_value=None)):
            assert await ClaudeDiscovery(tmp_path / "missing.json").discover() == []


# ---------------------------------------------------------------------------
# Codex
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_codex_reads_first_existing_auth_file(tmp_path):
    second = tmp_path / "b" / "auth.json"
    second.parent.mkdir()
    second.write_text(json.dumps({"tokens": {"access_token": "cx", "refresh_token": "rx"}}))

    results = await CodexDiscovery(paths=[tmp_path / "a" / "auth.json", second]).discover()

    assert len(results) == 1
    token = results[0].tokens[0]
    assert (token.access_token, token.refresh_token) == ("cx", "rx")


@pytest.mark.asyncio
async def test_codex_ignores_malformed_file(tmp_path):
    path = tmp_path / "auth.json"
    path.write_text("{broken")
    assert await CodexDiscovery(paths=[path]).discover() == []


# ---------------------------------------------------------------------------
# Cursor and Windsurf
# ---------------------------------------------------------------------------


def test_jwt_expiration():
    assert jwt_expiration(_jwt({"exp": 1767225600})).year == 2026
    assert jwt_expiration("opaque-token") is None


@pytest.mark.asyncio
async def test_cursor_reads_state_db(tmp_path):
    access = _jwt({"exp": 1767225600})
    db = _state_db(
        tmp_path / "state.vscdb",
        {"cursorAuth/accessToken": access, "cursorAuth/refreshToken": "refresh"},
    )

    results = await CursorDiscovery(db_path=db).discover()

    token = results[0].tokens[0]
    assert results[0].source == "sqlite"
    assert token.access_token == access
    assert token.refresh_token == "refresh"
    assert token.expires_at is not None


@pytest.mark.asyncio
async def test_cursor_missing_db(tmp_path):
    assert await CursorDiscovery(db_path=tmp_path / "nope.vscdb").discover() == []


@pytest.mark.asyncio
async def test_windsurf_reads_api_key(tmp_path):
    db = _state_db(
        tmp_path / "state.vscdb",
        {"windsurfAuthStatus": json.dumps({"apiKey": "ws-key", "name": "x"})},
    )
    results = await WindsurfDiscovery(db_path=db).discover()
    assert results[0].service is Service.WINDSURF
    assert results[0].tokens[0].access_token == "ws-key"


@pytest.mark.asyncio
async def test_windsurf_invalid_json(tmp_path):
    db = _state_db(tmp_path / "state.vscdb", {"windsurfAuthStatus": "{nope"})
    assert await WindsurfDiscovery(db_path=db).discover() == []


# ---------------------------------------------------------------------------
# Copilot
# ---------------------------------------------------------------------------


def _github(login="octocat", status=200):
    def handler(request):
        assert request.url.path == "/user"
        return httpx.Response(status, json={"login": login})

    return httpx.MockTransport(handler)


class TestCopilot:
    def test_decode_keyring_value(self):
        wrapped = "go-keyring-base64:" + base64.b64encode(b"gho_secret").decode()
        assert decode_keyring_value(wrapped) == "gho_secret"
        assert decode_keyring_value("gho_plain") == "gho_plain"
        assert decode_keyring_value("go-keyring-base64:!!!") is None

    def test_read_hosts_token(self, tmp_path):
        path = tmp_path / "hosts.yml"
        path.write_text(
            yaml.safe_dump({"github.com": {"oauth_token": "gho_hosts", "user": "x"}})
        )
        assert read_hosts_token(path) == "gho_hosts"
        assert read_hosts_token(tmp_path / "missing.yml") is None

    @pytest.mark.asyncio
    async def test_username_lookup(self):
        assert await fetch_github_username("t", transport=_github()) == "octocat"
        assert await fetch_github_username("t", transport=_github(status=401)) is None

    @pytest.mark.asyncio
    async def test_keychain_token_labelled_with_username(self, tmp_path):
        wrapped = "go-keyring-base64:" + base64.b64encode(b"gho_key").decode()
        discoverer = CopilotDiscovery(
            hosts_path=tmp_path / "hosts.yml", transport=_github("mona")
        )
        with patch(KEYCHAIN, new=AsyncMock(return_value=wrapped)):
            results = await discoverer.discover()

        assert results[0].source == "gh-cli"
        assert results[0].label == "mona"
        assert results[0].tokens[0].access_token == "gho_key"

    @pytest.mark.asyncio
    async def test_hosts_file_before_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GH_TOKEN", "gho_env")
        path = tmp_path / "hosts.yml"
        path.write_text(yaml.safe_dump({"github.com": {"oauth_token": "gho_hosts"}}))
        discoverer = CopilotDiscovery(hosts_path=path, transport=_github())

        with patch(KEYCHAIN, new=AsyncMock(return_value=None)):
            results = await discoverer.discover()

        assert results[0].source == "gh-hosts"
        assert results[0].tokens[0].access_token == "gho_hosts"

    @pytest.mark.asyncio
    async def test_env_token_without_username(self, tmp_path, monkeypatch):
        monkeypatch.delenv("GH_TOKEN", raising=False)
        monkeypatch.setenv("GITHUB_TOKEN", "gho_env")
        discoverer = CopilotDiscovery(
            hosts_path=tmp_path / "hosts.yml", transport=_github(status=500)
        )

        with patch(KEYCHAIN, new=AsyncMock(return_value=None)):
            results = await discoverer.discover()

        assert results[0].source == "env"
        assert results[0].label is None

    @pytest.mark.asyncio
    async def test_no_token_anywhere(self, tmp_path, monkeypatch):
        monkeypatch.delenv("GH_TOKEN", raising=False)
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        discoverer = CopilotDiscovery(hosts_path=tmp_path / "hosts.yml")
        with patch(KEYCHAIN, new=AsyncMock(return_value=None)):
            assert await discoverer.discover() == []


# ---------------------------------------------------------------------------
# Antigravity
# ---------------------------------------------------------------------------


PS_OUTPUT = """\
  PID ARGS
  101 /Applications/Antigravity.app/Contents/Resources/bin/language_server_macos --csrf_token abc123 --random_port
  202 /usr/bin/other_process --csrf_token nope
  303 /opt/antigravity/language_server_linux_x64 --csrf_token=def456
"""

LSOF_OUTPUT = """\
COMMAND   PID USER   FD   TYPE DEVICE SIZE/OFF NODE NAME
language_ 101 me   10u  IPv4 0x1      0t0  TCP 127.0.0.1:53410 (LISTEN)
language_ 101 me   11u  IPv4 0x2      0t0  TCP 127.0.0.1:53411 (LISTEN)
language_ 101 me   12u  IPv6 0x3      0t0  TCP [::1]:53410 (LISTEN)
"""


class TestAntigravity:
    def test_parse_process_line(self):
        lines = PS_OUTPUT.splitlines()
        assert parse_process_line(lines[0]) is None
        assert parse_process_line(lines[1]).csrf == "abc123"
        assert parse_process_line(lines[2]) is None
        server = parse_process_line(lines[3])
        assert (server.pid, server.csrf) == (303, "def456")

    def test_parse_listening_ports_dedupes(self):
        assert parse_listening_ports(LSOF_OUTPUT) == [53410, 53411]

    def test_token_round_trip(self):
        token = make_token(53410, "abc123")
        assert token.access_token == "53410:abc123"
        assert split_token(token.access_token) == (53410, "abc123")
        assert split_token("abc123") is None
        assert split_token("x:y") is None
        assert split_token("99999:x") is None
        assert split_token("0:x") is None

    @pytest.mark.asyncio
    async def test_discover_one_result_per_server(self):
        async def fake_run(*args):
            if args[0] == "ps":
                return PS_OUTPUT
            if "101" in args:
                return LSOF_OUTPUT
            return None

        with patch(RUN_COMMAND, new=AsyncMock(side_effect=fake_run)):
            results = await AntigravityDiscovery().discover()

        assert len(results) == 1
        assert results[0].source == "process"
        assert [t.access_token for t in results[0].tokens] == [
            "53410:abc123",
            "53411:abc123",
        ]

    @pytest.mark.asyncio
    async def test_discover_without_ps(self):
        with patch(RUN_COMMAND, new=AsyncMock(return_value=None)):
            assert await AntigravityDiscovery().discover() == []
