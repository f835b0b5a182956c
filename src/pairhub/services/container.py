"""Service wiring — builds the object graph shared by the app and scripts."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from pairhub.config import Settings, settings as default_settings
from pairhub.database.engine import build_engine
from pairhub.database.store import RecordStore
from pairhub.mock_protocol.client import SimulatedProtocolClient
from pairhub.models.base import utcnow
from pairhub.protocol.base import ProtocolClient
from pairhub.protocol.bridge import BridgeProtocolClient
from pairhub.services.accounts import AccountService
from pairhub.services.admission import AdmissionGate
from pairhub.services.dispatcher import CommandDispatcher
from pairhub.services.events import EventHub
from pairhub.services.metering import MeteringScheduler
from pairhub.services.orchestrator import PairingOrchestrator
from pairhub.services.registry import SessionRegistry


@dataclass
class Services:
    settings: Settings
    store: RecordStore
    protocol: ProtocolClient
    events: EventHub
    accounts: AccountService
    registry: SessionRegistry
    gate: AdmissionGate
    dispatcher: CommandDispatcher
    orchestrator: PairingOrchestrator
    metering: MeteringScheduler


def build_protocol(config: Settings) -> ProtocolClient:
    if config.protocol_backend == "bridge":
        return BridgeProtocolClient(base_url=config.bridge_base_url, token=config.bridge_token)
    return SimulatedProtocolClient()


def build_services(
    config: Settings | None = None,
    protocol: ProtocolClient | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> Services:
    config = config or default_settings
    store = RecordStore(build_engine(config.database_url, echo=config.debug))
    protocol = protocol or build_protocol(config)
    events = EventHub()
    registry = SessionRegistry(store, clock=clock)
    dispatcher = CommandDispatcher(prefix=config.command_prefix)
    orchestrator = PairingOrchestrator(
        registry, events, protocol, dispatcher, logout_timeout=config.logout_timeout_seconds
    )
    return Services(
        settings=config,
        store=store,
        protocol=protocol,
        events=events,
        accounts=AccountService(store, signup_coins=config.signup_coins),
        registry=registry,
        gate=AdmissionGate(
            store,
            sessions_dir=config.sessions_dir,
            max_active_sessions=config.max_active_sessions,
            pairing_cost=config.pairing_cost,
            cooldown_seconds=config.pairing_cooldown_seconds,
            clock=clock,
        ),
        dispatcher=dispatcher,
        orchestrator=orchestrator,
        metering=MeteringScheduler(
            store,
            registry,
            orchestrator,
            coins_per_minute=config.coins_per_minute,
            interval_seconds=config.metering_interval_seconds,
            clock=clock,
        ),
    )
