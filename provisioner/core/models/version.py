"""
ComponentVersion — a requested component version and what it resolved to.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ComponentVersion(BaseModel):
    """A named component (compiler, base OS, tool) and its version.

    ``resolved`` is set once by the version resolver and never changes for
    the lifetime of a build run. The model is frozen; ``resolve()`` returns
    a new instance.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    requested: str
    resolved: str | None = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved is not None

    @property
    def effective(self) -> str:
        """The resolved version if known, otherwise the requested one."""
        return self.resolved if self.resolved is not None else self.requested

    def resolve(self, value: str) -> ComponentVersion:
        """Return a copy with ``resolved`` set.

        Raises:
            ValueError: If a different resolved value was already recorded.
        """
        if self.resolved is not None and self.resolved != value:
            raise ValueError(
                f"Component '{self.name}' already resolved to "
                f"{self.resolved!r}, cannot change to {value!r}"
            )
        return self.model_copy(update={"resolved": value})
