"""Adapters — collaborators the engine runs commands and probes through.

Public re-exports for convenient access.
"""

from provisioner.adapters.base import (
    CommandResult,
    CommandRunner,
    ImageStore,
    Layer,
    ProbeError,
    VersionProbe,
)
from provisioner.adapters.mock import MockCommandRunner
from provisioner.adapters.probe import CommandVersionProbe, StaticVersionProbe
from provisioner.adapters.shell.command import SubprocessCommandRunner
from provisioner.adapters.store import InMemoryImageStore, LocalImageStore

__all__ = [
    "CommandResult",
    "CommandRunner",
    "CommandVersionProbe",
    "ImageStore",
    "InMemoryImageStore",
    "Layer",
    "LocalImageStore",
    "MockCommandRunner",
    "ProbeError",
    "StaticVersionProbe",
    "SubprocessCommandRunner",
    "VersionProbe",
]
