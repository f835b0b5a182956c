"""Interactive CLI simulator — pair a session and chat with the bot without WhatsApp."""

import asyncio

from pairhub.database.engine import init_db
from pairhub.errors import AdmissionError, ApiError, PairHubError
from pairhub.mock_protocol.client import SimulatedProtocolClient
from pairhub.models.session import SessionStatus
from pairhub.services.container import Services, build_services
from pairhub.services.events import PAIRING_CODE, PAIRING_ERROR

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
BOLD = "\033[1m"
RESET = "\033[0m"

DEMO_EMAIL = "simulator@example.com"
DEMO_PASSWORD = "simulator"
SENDER_JID = "10000000000@s.whatsapp.net"


async def ask(prompt: str) -> str:
    # input() runs in a thread so session runtimes keep processing events.
    return (await asyncio.to_thread(input, prompt)).strip()


async def wait_for_code(services: Services, session_id: str, timeout: float = 5.0) -> str | None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        for event in services.events.history(session_id):
            if event.name == PAIRING_CODE:
                return event.data["code"]
            if event.name == PAIRING_ERROR:
                print(f"{RED}Pairing error: {event.data.get('message')}{RESET}")
                return None
        await asyncio.sleep(0.05)
    return None


async def demo_user(services: Services):
    try:
        user = await services.accounts.register(DEMO_EMAIL, DEMO_PASSWORD)
    except ApiError:
        user = await services.accounts.authenticate(DEMO_EMAIL, DEMO_PASSWORD)
    if user.coins < services.settings.pairing_cost:
        user = await services.accounts.grant(user.id, services.settings.signup_coins)
    return user


async def chat(services: Services, protocol: SimulatedProtocolClient, user_id: str, session_id: str) -> None:
    session = protocol.get(session_id)
    seen = len(session.sent)

    while services.registry.get_live(session_id) is not None:
        try:
            line = await ask(f"{BLUE}{BOLD}You:{RESET} ")
        except (KeyboardInterrupt, EOFError):
            break
        if not line:
            continue
        if line.lower() == "quit":
            break
        if line.lower() == "drop":
            session.drop("Connection Lost", status_code=408)
        elif line.lower() == "tick":
            report = await services.metering.tick()
            balance = (await services.accounts.get(user_id)).coins
            print(f"{DIM}Charged {report.coins_charged} coin(s); balance {balance}{RESET}\n")
        else:
            session.receive(SENDER_JID, line)

        await asyncio.sleep(0.2)
        for _, text in session.sent[seen:]:
            print(f"{GREEN}{BOLD}Bot:{RESET} {text}\n")
        seen = len(session.sent)

    meta = await services.registry.get(session_id)
    print(f"{DIM}Session {session_id} is {meta.status.value}{RESET}")


async def main() -> None:
    print(f"\n{BOLD}{'=' * 52}")
    print("  🤖  PairHub — Pairing Simulator")
    print(f"{'=' * 52}{RESET}\n")

    protocol = SimulatedProtocolClient()
    services = build_services(protocol=protocol)
    await init_db(services.store.engine)
    await services.registry.reconcile_orphans()

    try:
        user = await demo_user(services)
        print(f"{DIM}Signed in as {user.email} ({user.coins} coins){RESET}")
        print(f"{DIM}Commands start with '{services.settings.command_prefix}', e.g. "
              f"{services.settings.command_prefix}help{RESET}")
        print(f"{DIM}Type 'drop' to lose the connection, 'tick' to meter, 'quit' to exit{RESET}\n")

        phone = await ask(f"{YELLOW}Phone number to pair (digits only): {RESET}") or "15551234567"
        try:
            meta = await services.gate.admit(user.id, phone)
        except AdmissionError as exc:
            print(f"{RED}Rejected: {exc.message}{RESET}")
            return

        await services.orchestrator.start_pairing(
            meta.id, meta.folder, meta.phone_number, meta.owner_user_id
        )
        code = await wait_for_code(services, meta.id)
        if code is None:
            return
        print(f"{GREEN}Pairing code: {BOLD}{code[:4]}-{code[4:]}{RESET}")

        while True:
            typed = await ask(f"{YELLOW}Enter the code on the 'phone': {RESET}")
            if protocol.confirm_code(meta.id, typed):
                break
            print(f"{RED}Code rejected, try again{RESET}")

        await asyncio.sleep(0.1)
        current = await services.registry.get(meta.id)
        if current.status is not SessionStatus.CONNECTED:
            print(f"{RED}Session is {current.status.value}{RESET}")
            return
        print(f"{GREEN}Connected!{RESET}\n")

        await chat(services, protocol, user.id, meta.id)
    except PairHubError as exc:
        print(f"{RED}{exc.message}{RESET}")
    finally:
        await services.orchestrator.shutdown()
        await services.store.dispose()


if __name__ == "__main__":
    asyncio.run(main())
