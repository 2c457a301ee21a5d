from __future__ import annotations

from collections.abc import Sequence

from prompt_toolkit import HTML, PromptSession, print_formatted_text
from prompt_toolkit.validation import Validator

from messenger_cli.shell.render import escape

Choice = tuple[str, str]


def print_markup(markup: str) -> None:
    print_formatted_text(HTML(markup))


def _non_empty_validator(message: str) -> Validator:
    return Validator.from_callable(lambda text: len(text) > 0, error_message=message)


def _choice_validator(count: int) -> Validator:
    def is_valid(text: str) -> bool:
        text = text.strip()
        return text == "" or (text.isdigit() and 1 <= int(text) <= count)

    return Validator.from_callable(is_valid, error_message=f"Enter a number between 1 and {count}")


class Prompter:
    """Interactive questions asked through a shared ``PromptSession``."""

    def __init__(self, session: PromptSession[str] | None = None) -> None:
        self._session: PromptSession[str] = session or PromptSession()

    async def command(self, delimiter: str) -> str:
        return await self._session.prompt_async(delimiter)

    async def text(self, message: str) -> str:
        answer = await self._session.prompt_async(
            message,
            validator=_non_empty_validator("A value is required"),
            validate_while_typing=False,
        )
        return answer.strip()

    async def password(self, message: str) -> str:
        return await self._session.prompt_async(
            message,
            is_password=True,
            validator=_non_empty_validator("A value is required"),
            validate_while_typing=False,
        )

    async def confirm(self, message: str, *, default: bool = True) -> bool:
        hint = "(Y/n)" if default else "(y/N)"
        answer = await self._session.prompt_async(HTML(f"{message} {hint} "))
        answer = answer.strip().lower()
        if not answer:
            return default
        return answer in {"y", "yes"}

    async def choose(self, message: str, choices: Sequence[Choice]) -> str | None:
        """Print numbered ``(value, label)`` choices and return the picked value."""
        print_markup(f"<b>{escape(message)}</b>")
        for _, label in choices:
            print_markup(label)

        answer = await self._session.prompt_async(
            "> ",
            validator=_choice_validator(len(choices)),
            validate_while_typing=False,
        )
        answer = answer.strip()
        if not answer:
            return None
        return choices[int(answer) - 1][0]

    async def compose(self, message: str) -> str:
        print_markup("<i>Press Esc then Enter to send.</i>")
        return await self._session.prompt_async(message, multiline=True)
