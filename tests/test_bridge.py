"""Tests for the bridge protocol client (httpx.MockTransport) and wire-event parsing."""

import json

import httpx
import pytest

from pairhub.errors import PairingCodeError
from pairhub.protocol.base import (
    ConnectionUpdate,
    CredentialsUpdate,
    MessagesUpsert,
    parse_event,
)
from pairhub.protocol.bridge import BridgeProtocolClient
from pairhub.protocol.credentials import CredentialStore


class Sidecar:
    """Minimal fake of the sidecar's REST surface."""

    def __init__(self, pairing_status: int = 200) -> None:
        self.requests: list[tuple[str, dict, str | None]] = []
        self.pairing_status = pairing_status

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content or b"{}")
        self.requests.append((request.url.path, body, request.headers.get("X-Bridge-Token")))
        if request.url.path.endswith("/pairing-code"):
            if self.pairing_status != 200:
                return httpx.Response(self.pairing_status, json={"error": "boom"})
            return httpx.Response(200, json={"pairingCode": "ABCD1234", "ttl": 60})
        return httpx.Response(200, json={"ok": True})


@pytest.fixture
def sidecar():
    return Sidecar()


@pytest.fixture
def client(sidecar):
    return BridgeProtocolClient(
        base_url="http://bridge.test/", token="s3cret", transport=httpx.MockTransport(sidecar)
    )


@pytest.mark.asyncio
async def test_connect_posts_credentials(client, sidecar, tmp_path):
    creds = await CredentialStore.load(tmp_path / "session-a")

    session = await client.connect("a", creds)

    path, body, token = sidecar.requests[0]
    assert path == "/sessions"
    assert body["sessionId"] == "a"
    assert body["creds"]["registered"] is False
    assert token == "s3cret"
    assert session.session_id == "a"


@pytest.mark.asyncio
async def test_pairing_code_and_messages(client, sidecar, tmp_path):
    session = await client.connect("a", await CredentialStore.load(tmp_path / "a"))

    pairing = await session.request_pairing_code("15551234567")
    await session.send_message("1@s.whatsapp.net", "hi")
    await session.logout()

    assert pairing.code == "ABCD1234"
    assert pairing.ttl == 60
    assert [r[0] for r in sidecar.requests[1:]] == [
        "/sessions/a/pairing-code",
        "/sessions/a/messages",
        "/sessions/a/logout",
    ]
    assert sidecar.requests[2][1] == {"to": "1@s.whatsapp.net", "text": "hi"}


@pytest.mark.asyncio
async def test_pairing_code_http_error(tmp_path):
    sidecar = Sidecar(pairing_status=500)
    client = BridgeProtocolClient("http://bridge.test", "t", transport=httpx.MockTransport(sidecar))
    session = await client.connect("a", await CredentialStore.load(tmp_path / "a"))

    with pytest.raises(PairingCodeError):
        await session.request_pairing_code("15551234567")


@pytest.mark.asyncio
async def test_route_delivers_until_closed(client, tmp_path):
    session = await client.connect("a", await CredentialStore.load(tmp_path / "a"))
    update = ConnectionUpdate(connection="open")

    assert client.route("a", update)
    assert not client.route("missing", update)

    session.close()
    assert not client.route("a", update)

    received = [event async for event in session.events()]
    assert received == [update]


def test_parse_connection_close():
    event = parse_event(
        "connection.update",
        {
            "connection": "close",
            "lastDisconnect": {"error": {"message": "Bad session", "statusCode": 500}},
        },
    )
    assert isinstance(event, ConnectionUpdate)
    assert event.is_close
    assert event.reason == "Bad session"
    assert event.status_code == 500


def test_parse_creds_and_messages():
    creds = parse_event("creds.update", {"registered": True})
    assert isinstance(creds, CredentialsUpdate)
    assert creds.creds == {"registered": True}

    upsert = parse_event(
        "messages.upsert",
        {
            "messages": [
                {"key": {"remoteJid": "1@s.whatsapp.net"}, "message": {"conversation": ".ping"}},
                {"key": {}, "message": {"conversation": "no sender"}},
            ]
        },
    )
    assert isinstance(upsert, MessagesUpsert)
    assert len(upsert.messages) == 1
    assert upsert.messages[0].text() == ".ping"


def test_parse_unknown_kind():
    assert parse_event("presence.update", {}) is None
