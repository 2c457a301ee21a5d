from __future__ import annotations

import asyncio
from collections.abc import Sequence

from fakes import FakeTransport, make_message
from messenger_cli.core.errors import TransportError
from messenger_cli.schemas import Friend, ThreadSummary
from messenger_cli.services.session_store import SessionStore
from messenger_cli.services.thread_store import ThreadStore
from messenger_cli.shell.repl import Shell


class _ShellTransport(FakeTransport):
    def __init__(self, **kwargs: object) -> None:
        super().__init__(**kwargs)
        self.logins: list[tuple[str, str]] = []
        self.restored: list[bytes] = []
        self.reject_state = False

    async def login(self, username: str, password: str) -> None:
        self.logins.append((username, password))

    async def login_from_state(self, state: bytes) -> None:
        if self.reject_state:
            raise TransportError(code="invalid_refresh_token", message="Refresh token is invalid", status_code=401)
        self.restored.append(state)


class _FakePrompter:
    def __init__(self, *, answers: Sequence[str] = (), choices: Sequence[str | None] = (), confirms: Sequence[bool] = ()):
        self.answers = list(answers)
        self.choices = list(choices)
        self.confirms = list(confirms)
        self.asked: list[str] = []

    async def command(self, delimiter: str) -> str:
        raise EOFError

    async def text(self, message: str) -> str:
        self.asked.append(message)
        return self.answers.pop(0)

    async def password(self, message: str) -> str:
        self.asked.append(message)
        return self.answers.pop(0)

    async def confirm(self, message: str, *, default: bool = True) -> bool:
        self.asked.append(message)
        return self.confirms.pop(0)

    async def choose(self, message: str, choices: Sequence[tuple[str, str]]) -> str | None:
        self.asked.append(message)
        return self.choices.pop(0)

    async def compose(self, message: str) -> str:
        self.asked.append(message)
        return self.answers.pop(0)


class _FakeImageCache:
    async def resolve(self, url: str | None) -> str:
        return ""


def _shell(settings, prompter: _FakePrompter) -> tuple[Shell, _ShellTransport, list[str]]:
    transport = _ShellTransport(
        summaries=[
            ThreadSummary(thread_id="t1", participants=["me", "u2"], snippet="hey", timestamp=200),
            ThreadSummary(thread_id="t2", participants=["me", "u3"], snippet="yo", timestamp=100),
        ],
        friends=[Friend(user_id="u2", full_name="Bob"), Friend(user_id="u3", full_name="Carol")],
        histories={"t1": [make_message("m1", 150, body="first from bob"), make_message("m2", 200, body="hey")]},
    )
    printed: list[str] = []
    shell = Shell(
        settings=settings,
        transport=transport,
        store=ThreadStore(transport),
        image_cache=_FakeImageCache(),
        session_store=SessionStore(settings.state_file),
        prompter=prompter,
        print_line=printed.append,
    )
    return shell, transport, printed


def test_commands_require_login(settings):
    shell, transport, printed = _shell(settings, _FakePrompter())

    for command in ("threads", "t", "send", "messages"):
        assert asyncio.run(shell.execute(command)) is True

    assert sum("You must login before continuing." in line for line in printed) == 4
    assert transport.calls == []


def test_init_with_credentials_loads_threads(settings):
    prompter = _FakePrompter(answers=["alice", "secret"])
    shell, transport, printed = _shell(settings, prompter)

    async def scenario() -> None:
        try:
            await shell.execute("init")
        finally:
            await shell.close()

    asyncio.run(scenario())

    assert transport.logins == [("alice", "secret")]
    assert shell.logged_in is True
    assert "2 conversations loaded." in printed[-1]


def test_init_reuses_stored_session(settings):
    prompter = _FakePrompter()
    shell, transport, printed = _shell(settings, prompter)

    async def scenario() -> None:
        await SessionStore(settings.state_file).write(b"stored")
        try:
            await shell.execute("init")
        finally:
            await shell.close()

    asyncio.run(scenario())

    assert transport.restored == [b"stored"]
    assert transport.logins == []
    assert prompter.asked == []
    assert shell.logged_in is True


def test_init_with_rejected_session_falls_back_to_credentials(settings):
    prompter = _FakePrompter(answers=["alice", "secret"])
    shell, transport, _ = _shell(settings, prompter)
    transport.reject_state = True

    async def scenario() -> None:
        await SessionStore(settings.state_file).write(b"stale")
        try:
            await shell.execute("init")
        finally:
            await shell.close()

    asyncio.run(scenario())

    assert transport.logins == [("alice", "secret")]
    assert not settings.state_file.exists()


def test_threads_prints_chosen_conversation(settings):
    prompter = _FakePrompter(answers=["alice", "secret"], choices=["t1"])
    shell, _, printed = _shell(settings, prompter)

    async def scenario() -> None:
        try:
            await shell.execute("init")
            await shell.execute("threads bob")
        finally:
            await shell.close()

    asyncio.run(scenario())

    assert shell.current_thread is not None and shell.current_thread.thread_id == "t1"
    assert any("first from bob" in line for line in printed)
    assert printed[-1].startswith("<b>Bob</b>")


def test_threads_search_without_match(settings):
    prompter = _FakePrompter(answers=["alice", "secret"])
    shell, _, printed = _shell(settings, prompter)

    async def scenario() -> None:
        try:
            await shell.execute("init")
            await shell.execute("t nobody")
        finally:
            await shell.close()

    asyncio.run(scenario())

    assert printed[-1] == "No conversation found."


def test_send_to_current_thread_after_confirmation(settings):
    prompter = _FakePrompter(answers=["alice", "secret", "hello carol"], choices=["t2"], confirms=[True])
    shell, transport, printed = _shell(settings, prompter)

    async def scenario() -> None:
        try:
            await shell.execute("init")
            await shell.execute("send")
            await shell.execute("s")
        finally:
            await shell.close()

    prompter.answers.append("second note")
    asyncio.run(scenario())

    assert transport.sent == [("hello carol", "t2"), ("second note", "t2")]
    assert printed.count("<ansigreen>Message sent.</ansigreen>") == 2
    assert any("Carol" in question for question in prompter.asked if question.startswith("Send a message"))


def test_send_blank_message_prints_error(settings):
    prompter = _FakePrompter(answers=["alice", "secret", "   "], choices=["t1"])
    shell, transport, printed = _shell(settings, prompter)

    async def scenario() -> bool:
        try:
            await shell.execute("init")
            return await shell.execute("send")
        finally:
            await shell.close()

    assert asyncio.run(scenario()) is True
    assert transport.sent == []
    assert printed[-1] == "<ansired><b>Message body cannot be empty</b></ansired>"


def test_incoming_messages_from_others_are_announced(settings):
    prompter = _FakePrompter(answers=["alice", "secret"])
    shell, transport, printed = _shell(settings, prompter)

    async def scenario() -> None:
        try:
            await shell.execute("init")
            transport.subscription.push(make_message("own", 500, sender_id="me", thread_id="t1"))
            transport.subscription.push(make_message("m9", 600, body="ping", thread_id="t1"))
            for _ in range(50):
                if any("New message!" in line for line in printed):
                    break
                await asyncio.sleep(0.01)
        finally:
            await shell.close()

    asyncio.run(scenario())

    announcements = [line for line in printed if "New message!" in line]
    assert announcements == ["<b>New message!</b> ping (<ansiblue>Bob</ansiblue>)"]


def test_unknown_command_help_and_exit(settings):
    shell, _, printed = _shell(settings, _FakePrompter())

    assert asyncio.run(shell.execute("dance")) is True
    assert "Unknown command <b>dance</b>" in printed[-1]

    asyncio.run(shell.execute("help"))
    assert any(line.startswith("  <b>threads</b> (t)") for line in printed)
    assert printed[-1] == "  <b>exit</b>: Leave the shell"

    assert asyncio.run(shell.execute("")) is True
    assert asyncio.run(shell.execute("exit")) is False
    assert asyncio.run(shell.execute("QUIT")) is False
