"""
Adapter base — the contracts between the engine and the outside world.

The engine never shells out, probes compilers, or touches image storage
directly. It talks to three collaborators through these interfaces:

    CommandRunner  — runs a provisioning command with a timeout
    VersionProbe   — asks a tool for its self-reported version
    ImageStore     — fetches base layers and publishes stage artifacts
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel, Field

from provisioner.core.models.build_spec import ArtifactRef

# Output kept from a command; the report needs the tail, not the whole log.
OUTPUT_TAIL = 2000


def tail(text: str | None, limit: int = OUTPUT_TAIL) -> str:
    if not text:
        return ""
    return text[-limit:]


class CommandResult(BaseModel):
    """Result of running one command.

    Runners NEVER raise for a failing command: a non-zero exit code, a
    timeout, or a command that could not be launched are all captured
    here.
    """

    command: str | list[str]
    exit_code: int | None = 0
    stdout: str = ""
    stderr: str = ""
    elapsed_ms: int = 0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.exit_code == 0


class CommandRunner(ABC):
    """Runs provisioning commands.

    To create a new runner:
        1. Subclass CommandRunner
        2. Implement name and execute
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The runner identifier (e.g., 'subprocess', 'mock')."""

    @abstractmethod
    def execute(
        self,
        command: str | Sequence[str],
        working_dir: str | None,
        timeout: float,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run ``command`` in ``working_dir`` and wait at most ``timeout`` seconds.

        MUST never raise for command failure.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


class ProbeError(Exception):
    """The version probe could not get an answer from the tool."""


class VersionProbe(ABC):
    """Asks an installed tool for its version string."""

    @abstractmethod
    def probe(
        self,
        tool_path: str,
        *,
        args: Sequence[str] = ("-dumpversion",),
        timeout: float = 30.0,
        env: Mapping[str, str] | None = None,
    ) -> str:
        """Return the tool's self-reported version string.

        Raises:
            ProbeError: If the tool is missing, crashes, or times out.
        """


class Layer(BaseModel):
    """An opaque base layer handed back by an image store."""

    ref: str
    location: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class ImageStore(ABC):
    """Persists stage artifacts and supplies base layers.

    The core never inspects layer or artifact formats.
    """

    @abstractmethod
    def fetch(self, ref: str) -> Layer:
        """Fetch a base image/layer by reference.

        Raises:
            ImageStoreError: If the reference cannot be fetched.
        """

    @abstractmethod
    def publish(self, stage_id: str, artifacts: Sequence[ArtifactRef]) -> None:
        """Publish a stage's artifacts.

        Raises:
            ImageStoreError: If publishing fails.
        """
