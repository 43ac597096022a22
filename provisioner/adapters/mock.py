"""
Mock command runner — universal test double for provisioning commands.

Used in mock mode to simulate a build without touching the host. By
default every command succeeds; individual commands can be scripted to
fail, time out, or print specific output by matching a substring of the
command text.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping, Sequence

from pydantic import BaseModel, Field

from provisioner.adapters.base import CommandResult, CommandRunner


class MockCall(BaseModel):
    """One recorded ``execute`` call."""

    command: str | list[str]
    working_dir: str | None = None
    timeout: float = 0.0
    env: dict[str, str] = Field(default_factory=dict)

    @property
    def text(self) -> str:
        return _command_text(self.command)


def _command_text(command: str | Sequence[str]) -> str:
    return command if isinstance(command, str) else " ".join(command)


class MockCommandRunner(CommandRunner):
    """Scriptable command runner.

    Responses are matched in registration order against the command
    text; the first registered substring contained in the command wins.
    """

    def __init__(
        self,
        runner_name: str = "mock",
        default_output: str = "[mock] executed",
    ):
        self._name = runner_name
        self._default_output = default_output
        self._responses: list[tuple[str, CommandResult]] = []
        self._call_log: list[MockCall] = []
        self._lock = threading.Lock()
        self.on_call: Callable[[MockCall], None] | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[MockCall]:
        """All calls this mock has received, in order."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    @property
    def commands(self) -> list[str]:
        return [c.text for c in self._call_log]

    def set_response(self, match: str, result: CommandResult) -> None:
        """Return ``result`` for every command containing ``match``."""
        self._responses.append((match, result))

    def set_failure(self, match: str, exit_code: int = 1, stderr: str = "mock failure") -> None:
        """Configure commands containing ``match`` to exit non-zero."""
        self.set_response(match, CommandResult(command=match, exit_code=exit_code, stderr=stderr))

    def set_timeout(self, match: str) -> None:
        """Configure commands containing ``match`` to time out."""
        self.set_response(
            match,
            CommandResult(command=match, exit_code=None, timed_out=True, stderr="timed out"),
        )

    def set_output(self, match: str, stdout: str) -> None:
        self.set_response(match, CommandResult(command=match, exit_code=0, stdout=stdout))

    def execute(
        self,
        command: str | Sequence[str],
        working_dir: str | None,
        timeout: float,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        recorded = command if isinstance(command, str) else list(command)
        call = MockCall(
            command=recorded,
            working_dir=working_dir,
            timeout=timeout,
            env=dict(env or {}),
        )
        with self._lock:
            self._call_log.append(call)
        if self.on_call is not None:
            self.on_call(call)

        text = _command_text(command)
        for match, result in self._responses:
            if match in text:
                return result.model_copy(update={"command": recorded})

        return CommandResult(command=recorded, exit_code=0, stdout=self._default_output)

    def reset(self) -> None:
        """Clear call log and scripted responses."""
        self._call_log.clear()
        self._responses.clear()
