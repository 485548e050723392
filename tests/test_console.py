from __future__ import annotations

import asyncio
import io
import os

from openbot.approval import ApprovalRequest
from openbot.console import OperatorConsole


def test_next_line_returns_none_at_eof() -> None:
    console = OperatorConsole(io.StringIO("hello\n\nsecond\n"), output=io.StringIO())

    async def scenario() -> list[str | None]:
        return [await console.next_line() for _ in range(4)]

    assert asyncio.run(scenario()) == ["hello", "", "second", None]
    assert console.closed


class PromptedInput:
    """A pipe whose writer waits for the approval prompt before answering."""

    def __init__(self) -> None:
        read_fd, write_fd = os.pipe()
        self.reader = os.fdopen(read_fd, "r", encoding="utf-8")
        self._writer = os.fdopen(write_fd, "w", encoding="utf-8")

    def type(self, text: str) -> None:
        self._writer.write(text)
        self._writer.flush()

    def close(self) -> None:
        self._writer.close()


async def wait_for_prompt(output: io.StringIO, count: int) -> None:
    for _ in range(500):
        if output.getvalue().count("Approve? [y/N]") >= count:
            return
        await asyncio.sleep(0.01)
    raise AssertionError("approval prompt was never shown")


def test_confirm_accepts_only_yes() -> None:
    stdin = PromptedInput()
    output = io.StringIO()
    console = OperatorConsole(stdin.reader, output=output)
    request = ApprovalRequest(call_id="c1", command="git push")

    async def scenario() -> list[bool | None]:
        answers: list[bool | None] = []
        for number, text in enumerate(["Yes\n", "nope\n"], start=1):
            pending = asyncio.ensure_future(console.confirm(request))
            await wait_for_prompt(output, number)
            stdin.type(text)
            answers.append(await pending)
        pending = asyncio.ensure_future(console.confirm(request))
        await wait_for_prompt(output, 3)
        stdin.close()
        answers.append(await pending)
        return answers

    assert asyncio.run(scenario()) == [True, False, None]
    assert "git push" in output.getvalue()


def test_confirm_ignores_lines_typed_before_the_prompt() -> None:
    stdin = PromptedInput()
    output = io.StringIO()
    console = OperatorConsole(stdin.reader, output=output)
    request = ApprovalRequest(call_id="c1", command="rm -rf /important")

    async def scenario() -> tuple[bool | None, list[str]]:
        console.start()
        stdin.type("y\n")
        await asyncio.sleep(0.1)
        pending = asyncio.ensure_future(console.confirm(request))
        await wait_for_prompt(output, 1)
        stdin.type("n\n")
        answer = await pending
        stdin.close()
        return answer, console.drain()

    answer, held = asyncio.run(scenario())

    assert answer is False
    assert held == ["y"]


def test_drain_collects_buffered_lines() -> None:
    console = OperatorConsole(io.StringIO("first\nsecond\nthird\n"), output=io.StringIO())

    async def scenario() -> tuple[str | None, list[str]]:
        head = await console.next_line()
        lines: list[str] = []
        for _ in range(200):
            lines.extend(console.drain())
            if console.closed:
                break
            await asyncio.sleep(0.01)
        return head, lines

    head, rest = asyncio.run(scenario())

    assert head == "first"
    assert rest == ["second", "third"]
    assert console.closed


def test_drain_before_start_is_empty() -> None:
    assert OperatorConsole(io.StringIO("x\n")).drain() == []
