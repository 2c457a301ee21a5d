from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from prompt_toolkit.patch_stdout import patch_stdout

from messenger_cli.core.errors import ClientError, TransportError
from messenger_cli.core.settings import Settings
from messenger_cli.realtime import IncomingListener
from messenger_cli.schemas import Message, Thread
from messenger_cli.services.image_cache import ImageCache
from messenger_cli.services.session_store import SessionStore
from messenger_cli.services.thread_store import ThreadStore
from messenger_cli.shell.prompts import Prompter, print_markup
from messenger_cli.shell.render import PrintLine, escape, print_thread, thread_choice_label
from messenger_cli.transport.http_client import HttpTransport

logger = logging.getLogger(__name__)

DELIMITER = "messenger $> "

Handler = Callable[[str], Awaitable[None]]


class Shell:
    def __init__(
        self,
        *,
        settings: Settings,
        transport: HttpTransport,
        store: ThreadStore,
        image_cache: ImageCache,
        session_store: SessionStore,
        prompter: Prompter,
        print_line: PrintLine = print_markup,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._store = store
        self._image_cache = image_cache
        self._session_store = session_store
        self._prompter = prompter
        self._print = print_line
        self.listener = IncomingListener(store=store, transport=transport, on_message=self._notify_incoming)
        self.logged_in = False
        self.current_thread: Thread | None = None

        self._commands: dict[str, tuple[Handler, str]] = {
            "init": (self.cmd_init, "Log in and load conversations"),
            "threads": (self.cmd_threads, "Display a conversation, optionally filtered: threads [search]"),
            "send": (self.cmd_send, "Send a message to a conversation"),
            "messages": (self.cmd_messages, "Dump the raw data of a conversation"),
            "help": (self.cmd_help, "Show this help"),
        }
        self._aliases = {"t": "threads", "s": "send"}

    async def run(self) -> None:
        self._print(f"<b>{escape(self._settings.app_name)}</b>. Type <b>init</b> to login, <b>help</b> for commands.")
        try:
            with patch_stdout():
                while True:
                    try:
                        line = await self._prompter.command(DELIMITER)
                    except KeyboardInterrupt:
                        continue
                    except EOFError:
                        break
                    if not await self.execute(line):
                        break
        finally:
            await self.close()

    async def close(self) -> None:
        await self.listener.stop()

    async def execute(self, line: str) -> bool:
        parts = line.strip().split(maxsplit=1)
        if not parts:
            return True
        name = parts[0].lower()
        argument = parts[1] if len(parts) > 1 else ""
        if name in {"exit", "quit"}:
            return False

        command = self._commands.get(self._aliases.get(name, name))
        if command is None:
            self._print(f"Unknown command <b>{escape(name)}</b>. Type <b>help</b> for the list of commands.")
            return True

        handler, _ = command
        logger.debug("Executing command name=%s", name)
        try:
            await handler(argument)
        except ClientError as exc:
            logger.warning("Command failed name=%s code=%s message=%s", name, exc.code, exc.message)
            self._print(f"<ansired><b>{escape(exc.message)}</b></ansired>")
        return True

    async def cmd_init(self, _: str) -> None:
        state = await self._session_store.read()
        if state is not None:
            try:
                await self._transport.login_from_state(state)
            except TransportError as exc:
                logger.warning("Stored session rejected code=%s", exc.code)
                await self._session_store.clear()
                state = None

        if state is None:
            username = await self._prompter.text("Enter your login: ")
            password = await self._prompter.password("Enter your password: ")
            await self._transport.login(username, password)

        threads = await self._store.refresh(self._settings.thread_limit)
        await self.listener.start()
        self.logged_in = True
        self._print(f"<ansigreen>Logged in.</ansigreen> {len(threads)} conversations loaded.")

    async def cmd_threads(self, search: str) -> None:
        if not self._require_login():
            return
        thread = await self.prompt_thread(search or None)
        if thread is None:
            return
        self.current_thread = await print_thread(
            self._store,
            thread,
            image_cache=self._image_cache,
            print_line=self._print,
            limit=self._settings.page_size,
        )

    async def cmd_send(self, _: str) -> None:
        if not self._require_login():
            return

        thread = self.current_thread
        if thread is not None:
            name = escape(ThreadStore.display_name(thread))
            if not await self._prompter.confirm(f"Send a message to <ansiblue>{name}</ansiblue>?"):
                thread = await self.prompt_thread()
        else:
            thread = await self.prompt_thread()
        if thread is None:
            return

        body = await self._prompter.compose("Message: ")
        await self._store.send_message(body, thread.thread_id)
        self._print("<ansigreen>Message sent.</ansigreen>")

    async def cmd_messages(self, search: str) -> None:
        if not self._require_login():
            return
        thread = await self.prompt_thread(search or None)
        if thread is None:
            return
        if thread.messages is None:
            thread = await self._store.fetch_page(thread.thread_id, self._settings.page_size)
        self._print(escape(thread.model_dump_json(indent=4)))

    async def cmd_help(self, _: str) -> None:
        aliases = {target: alias for alias, target in self._aliases.items()}
        for name, (_, description) in self._commands.items():
            alias = f" ({aliases[name]})" if name in aliases else ""
            self._print(f"  <b>{name}</b>{alias}: {escape(description)}")
        self._print("  <b>exit</b>: Leave the shell")

    async def prompt_thread(self, search: str | None = None) -> Thread | None:
        threads = self._store.search(search)
        if not threads:
            self._print("No conversation found.")
            return None

        choices = [
            (thread.thread_id, thread_choice_label(index, thread)) for index, thread in enumerate(threads, start=1)
        ]
        thread_id = await self._prompter.choose("Choose a conversation:", choices)
        if thread_id is None:
            return None
        self.current_thread = self._store.get(thread_id)
        return self.current_thread

    def _require_login(self) -> bool:
        if self.logged_in:
            return True
        self._print("<ansired><b>You must login before continuing.</b></ansired>")
        self._print("Type <b>init</b> to login.\n")
        return False

    def _notify_incoming(self, thread: Thread, message: Message) -> None:
        if message.sender_id == self._store.current_user_id:
            return
        name = escape(ThreadStore.display_name(thread))
        self._print(f"<b>New message!</b> {escape(message.body or '')} (<ansiblue>{name}</ansiblue>)")
