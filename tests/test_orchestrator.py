"""Tests for the PairingOrchestrator — lifecycle driven by simulated protocol events."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from conftest import assert_consistent, event_names, pairing_code, wait_for
from pairhub.errors import FatalStartupError
from pairhub.models.session import SessionStatus
from pairhub.protocol.base import ConnectionUpdate, InboundMessage, MessagesUpsert
from pairhub.services.events import (
    PAIRING_CLOSED,
    PAIRING_CODE,
    PAIRING_CONNECTED,
    PAIRING_ERROR,
    PAIRING_UPDATE,
)
from pairhub.services.orchestrator import classify_close


async def start(services, user_id: str, phone: str = "15551234567"):
    meta = await services.gate.admit(user_id, phone)
    handle = await services.orchestrator.start_pairing(
        meta.id, meta.folder, meta.phone_number, meta.owner_user_id
    )
    return meta, handle


def status_is(get_meta, session_id, status):
    async def check():
        return (await get_meta(session_id)).status is status

    return check


# ──────────────────────────────────────────────────────────
# Startup & pairing code
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_start_registers_handle_and_publishes_code(services, make_user, get_meta):
    user = await make_user()
    meta, handle = await start(services, user.id)

    assert services.registry.get_live(meta.id) is handle
    assert Path(meta.folder, "creds.json").exists()

    await wait_for(lambda: PAIRING_CODE in event_names(services, meta.id))
    code_event = next(e for e in services.events.history(meta.id) if e.name == PAIRING_CODE)
    assert len(code_event.data["code"]) == 8
    assert code_event.data["ttl"] == 60

    stored = await get_meta(meta.id)
    assert stored.status is SessionStatus.PAIRING
    assert stored.pairing_code == code_event.data["code"]
    assert stored.pairing_created_at is not None
    await assert_consistent(services)


@pytest.mark.asyncio
async def test_pairing_code_failure_is_not_fatal(services, protocol, make_user, get_meta):
    protocol.codes.generate = Mock(side_effect=RuntimeError("rate limited"))
    user = await make_user()
    meta, _ = await start(services, user.id)

    await wait_for(lambda: PAIRING_ERROR in event_names(services, meta.id))
    error = next(e for e in services.events.history(meta.id) if e.name == PAIRING_ERROR)
    assert error.data["message"] == "Pairing code generation failed"
    assert "rate limited" in error.data["details"]

    assert (await get_meta(meta.id)).status is SessionStatus.PAIRING
    assert services.registry.get_live(meta.id) is not None
    await assert_consistent(services)


@pytest.mark.asyncio
async def test_connect_failure_is_fatal(services, protocol, make_user, get_meta):
    protocol.connect = AsyncMock(side_effect=RuntimeError("socket refused"))
    user = await make_user()
    meta = await services.gate.admit(user.id, "15551234567")

    with pytest.raises(FatalStartupError):
        await services.orchestrator.start_pairing(
            meta.id, meta.folder, meta.phone_number, meta.owner_user_id
        )

    stored = await get_meta(meta.id)
    assert stored.status is SessionStatus.FAILED
    assert stored.failed_at is not None
    assert services.registry.get_live(meta.id) is None
    assert event_names(services, meta.id) == [PAIRING_ERROR]
    await assert_consistent(services)


@pytest.mark.asyncio
async def test_corrupt_credentials_are_fatal(services, make_user, get_meta):
    user = await make_user()
    meta = await services.gate.admit(user.id, "15551234567")
    Path(meta.folder).mkdir(parents=True, exist_ok=True)
    Path(meta.folder, "creds.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(FatalStartupError):
        await services.orchestrator.start_pairing(
            meta.id, meta.folder, meta.phone_number, meta.owner_user_id
        )
    assert (await get_meta(meta.id)).status is SessionStatus.FAILED


@pytest.mark.asyncio
async def test_spawned_startup_failure_is_captured(services, protocol, make_user, get_meta):
    protocol.connect = AsyncMock(side_effect=RuntimeError("boom"))
    user = await make_user()
    meta = await services.gate.admit(user.id, "15551234567")

    task = services.orchestrator.spawn_pairing(meta)
    await wait_for(task.done)

    assert isinstance(task.exception(), FatalStartupError)
    assert (await get_meta(meta.id)).status is SessionStatus.FAILED


# ──────────────────────────────────────────────────────────
# Connection lifecycle
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_open_transitions_to_connected(services, protocol, make_user, get_meta, clock):
    user = await make_user()
    meta, handle = await start(services, user.id)
    await wait_for(lambda: PAIRING_CODE in event_names(services, meta.id))

    assert protocol.confirm_code(meta.id, pairing_code(services, meta.id))
    await wait_for(status_is(get_meta, meta.id, SessionStatus.CONNECTED))
    await wait_for(lambda: PAIRING_CONNECTED in event_names(services, meta.id))

    stored = await get_meta(meta.id)
    assert stored.connected_at == clock.now
    assert stored.last_charged_at == clock.now
    assert handle.connected
    assert PAIRING_UPDATE in event_names(services, meta.id)

    creds = json.loads(Path(meta.folder, "creds.json").read_text(encoding="utf-8"))
    assert creds["registered"] is True
    assert creds["me"]["id"] == "15551234567@s.whatsapp.net"
    await assert_consistent(services)


@pytest.mark.asyncio
async def test_wrong_code_does_not_pair(services, protocol, make_user, get_meta):
    user = await make_user()
    meta, _ = await start(services, user.id)
    await wait_for(lambda: PAIRING_CODE in event_names(services, meta.id))

    assert not protocol.confirm_code(meta.id, "WRONG123")
    assert (await get_meta(meta.id)).status is SessionStatus.PAIRING


@pytest.mark.asyncio
async def test_recoverable_close_disconnects(services, protocol, make_user, get_meta, open_session):
    user = await make_user()
    handle = await open_session(user.id)

    protocol.get(handle.session_id).drop("Connection Lost", status_code=408)
    await wait_for(status_is(get_meta, handle.session_id, SessionStatus.DISCONNECTED))
    await wait_for(lambda: services.registry.get_live(handle.session_id) is None)

    closed = next(e for e in services.events.history(handle.session_id) if e.name == PAIRING_CLOSED)
    assert closed.data == {"reason": "Connection Lost", "recoverable": True}
    assert (await get_meta(handle.session_id)).disconnected_at is not None
    await assert_consistent(services)


@pytest.mark.asyncio
async def test_bad_session_close_fails(services, protocol, make_user, get_meta, open_session):
    user = await make_user()
    handle = await open_session(user.id)

    protocol.get(handle.session_id).drop("Bad session")
    await wait_for(status_is(get_meta, handle.session_id, SessionStatus.FAILED))

    assert services.registry.get_live(handle.session_id) is None
    await assert_consistent(services)


@pytest.mark.asyncio
async def test_close_while_pairing(services, protocol, make_user, get_meta):
    user = await make_user()
    meta, _ = await start(services, user.id)
    await wait_for(lambda: PAIRING_CODE in event_names(services, meta.id))

    protocol.get(meta.id).drop("stream errored out")
    await wait_for(status_is(get_meta, meta.id, SessionStatus.DISCONNECTED))
    await wait_for(lambda: services.registry.get_live(meta.id) is None)
    await assert_consistent(services)


@pytest.mark.asyncio
async def test_terminal_status_never_changes(services, protocol, make_user, get_meta, open_session):
    user = await make_user()
    handle = await open_session(user.id)
    protocol.get(handle.session_id).drop("Bad session")
    await wait_for(status_is(get_meta, handle.session_id, SessionStatus.FAILED))

    for target in SessionStatus:
        assert await services.registry.transition(handle.session_id, target) is None
    assert (await get_meta(handle.session_id)).status is SessionStatus.FAILED


@pytest.mark.asyncio
async def test_inbound_command_gets_reply(services, protocol, make_user, open_session):
    user = await make_user()
    handle = await open_session(user.id)
    sim = protocol.get(handle.session_id)

    sim.receive("4915112345678@s.whatsapp.net", ".echo hello world")
    sim.receive("4915112345678@s.whatsapp.net", "just chatting")
    sim.receive("4915112345678@s.whatsapp.net", ".ping")

    await wait_for(lambda: len(sim.sent) == 2)
    assert sim.sent == [
        ("4915112345678@s.whatsapp.net", "hello world"),
        ("4915112345678@s.whatsapp.net", "pong"),
    ]


@pytest.mark.asyncio
async def test_own_messages_are_not_dispatched(services, protocol, make_user, open_session):
    user = await make_user()
    handle = await open_session(user.id)
    sim = protocol.get(handle.session_id)

    sim.emit(
        MessagesUpsert(
            messages=(
                InboundMessage(
                    remote_jid="4915112345678@s.whatsapp.net",
                    content={"conversation": ".ping"},
                    from_me=True,
                ),
            )
        )
    )
    sim.receive("4915112345678@s.whatsapp.net", ".echo last")

    await wait_for(lambda: len(sim.sent) == 1)
    assert sim.sent == [("4915112345678@s.whatsapp.net", "last")]


@pytest.mark.asyncio
async def test_inbound_before_connect_is_dropped(services, protocol, make_user, get_meta):
    user = await make_user()
    meta, _ = await start(services, user.id)
    await wait_for(lambda: PAIRING_CODE in event_names(services, meta.id))
    sim = protocol.get(meta.id)

    sim.receive("4915112345678@s.whatsapp.net", ".ping")
    protocol.confirm_code(meta.id, pairing_code(services, meta.id))
    await wait_for(status_is(get_meta, meta.id, SessionStatus.CONNECTED))

    assert sim.sent == []


@pytest.mark.asyncio
async def test_shutdown_releases_runtimes(services, make_user, get_meta, open_session):
    user = await make_user()
    handle = await open_session(user.id)

    await services.orchestrator.shutdown()

    assert services.registry.live_count == 0
    assert (await get_meta(handle.session_id)).status is SessionStatus.DISCONNECTED
    await assert_consistent(services)


@pytest.mark.asyncio
async def test_finished_sessions_release_protocol_state(
    services, protocol, make_user, open_session, clock
):
    user = await make_user(coins=100)
    handles = []
    for n in range(3):
        handles.append(await open_session(user.id, f"1555000000{n}"))
        clock.advance(seconds=31)
    assert protocol.session_count == 3

    handles[0].protocol.drop("Connection Lost", status_code=408)
    handles[1].protocol.drop("Bad session")
    await services.orchestrator.terminate(handles[2], reason="done")
    for handle in handles:
        await wait_for(handle.task.done)

    assert protocol.session_count == 0
    assert all(protocol.get(handle.session_id) is None for handle in handles)


@pytest.mark.asyncio
async def test_closed_pairing_discards_code(services, protocol, make_user):
    user = await make_user()
    meta, handle = await start(services, user.id)
    await wait_for(lambda: PAIRING_CODE in event_names(services, meta.id))

    protocol.get(meta.id).drop("logged out", status_code=401)
    await wait_for(handle.task.done)

    assert protocol.get(meta.id) is None
    assert not protocol.codes.verify(meta.id, pairing_code(services, meta.id))


@pytest.mark.asyncio
async def test_reconcile_orphans_after_restart(services, make_user, get_meta):
    user = await make_user()
    meta = await services.gate.admit(user.id, "15551234567")

    closed = await services.registry.reconcile_orphans()

    assert closed == [meta.id]
    assert (await get_meta(meta.id)).status is SessionStatus.DISCONNECTED


# ──────────────────────────────────────────────────────────
# Close classification
# ──────────────────────────────────────────────────────────
@pytest.mark.parametrize(
    ("reason", "status_code", "recoverable"),
    [
        ("Bad session", None, False),
        ("Stream Errored (bad session)", None, False),
        ("logged out", 401, False),
        (None, 500, False),
        (None, 411, False),
        ("Connection Lost", 408, True),
        ("Connection Closed", 428, True),
        ("restart required", 515, True),
        (None, None, True),
        ("something new", None, True),
    ],
)
def test_classify_close(reason, status_code, recoverable):
    closed = classify_close(
        ConnectionUpdate(connection="close", reason=reason, status_code=status_code)
    )
    assert closed.recoverable is recoverable
