"""
Image stores — base layer lookup and artifact publication.

``LocalImageStore`` records one JSON manifest per published stage under
a directory. Writes are atomic (write to temp file, then rename) so a
crash never leaves a half-written manifest behind. Registry push/pull is
out of scope: registry references are handed back as opaque layers.
"""

from __future__ import annotations

import json
import logging
import re
import tempfile
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

from provisioner.adapters.base import ImageStore, Layer
from provisioner.core.errors import ImageStoreError
from provisioner.core.models.build_spec import ArtifactRef

logger = logging.getLogger(__name__)

# name[:tag][@digest], e.g. "debian:bookworm" or "gcc:13-bookworm"
_IMAGE_REF = re.compile(
    r"^[a-z0-9]+(?:[._/-][a-z0-9]+)*(?::[\w][\w.-]{0,127})?(?:@sha256:[a-f0-9]{64})?$"
)


def _check_ref(ref: str) -> None:
    if not ref or not _IMAGE_REF.match(ref):
        raise ImageStoreError(f"Invalid image reference: {ref!r}", ref=ref)


class LocalImageStore(ImageStore):
    """Directory-backed image store.

    Args:
        root: Directory that receives ``<stage_id>.json`` manifests.
    """

    def __init__(self, root: Path):
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def fetch(self, ref: str) -> Layer:
        local = Path(ref)
        if local.is_absolute() or ref.startswith("."):
            if not local.is_dir():
                raise ImageStoreError(f"Base layer directory not found: {ref}", ref=ref)
            return Layer(ref=ref, location=str(local.resolve()), metadata={"kind": "directory"})

        _check_ref(ref)
        logger.debug("Base image %s resolved as registry reference", ref)
        return Layer(ref=ref, location=ref, metadata={"kind": "registry"})

    def manifest_path(self, stage_id: str) -> Path:
        return self._root / f"{stage_id}.json"

    def publish(self, stage_id: str, artifacts: Sequence[ArtifactRef]) -> None:
        path = self.manifest_path(stage_id)
        if path.exists():
            raise ImageStoreError(f"Stage '{stage_id}' already published", stage_id=stage_id)

        manifest = {
            "stage_id": stage_id,
            "published_at": datetime.now(UTC).isoformat(),
            "artifacts": [a.model_dump(mode="json") for a in artifacts],
        }
        content = json.dumps(manifest, indent=2, ensure_ascii=False) + "\n"

        try:
            self._root.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self._root, prefix=".manifest_", suffix=".tmp")
            tmp = Path(tmp_path)
            try:
                with open(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                tmp.rename(path)
            except Exception:
                tmp.unlink(missing_ok=True)
                raise
        except OSError as e:
            raise ImageStoreError(f"Cannot publish stage '{stage_id}': {e}", stage_id=stage_id) from e

        logger.info("Published %d artifact(s) for stage %s → %s", len(artifacts), stage_id, path)

    def published(self) -> list[str]:
        """Stage IDs with a manifest in this store."""
        if not self._root.is_dir():
            return []
        return sorted(p.stem for p in self._root.glob("*.json"))


class InMemoryImageStore(ImageStore):
    """Records fetches and publications; used by mock mode and tests.

    Args:
        missing: Image references that ``fetch`` should reject.
        fail_publish: Stage IDs whose publication should fail.
    """

    def __init__(self, missing: Sequence[str] = (), fail_publish: Sequence[str] = ()):
        self._missing = set(missing)
        self._fail_publish = set(fail_publish)
        self.fetched: list[str] = []
        self.publications: list[tuple[str, list[ArtifactRef]]] = []

    def fetch(self, ref: str) -> Layer:
        self.fetched.append(ref)
        if ref in self._missing:
            raise ImageStoreError(f"Image not found: {ref}", ref=ref)
        return Layer(ref=ref, location=f"memory://{ref}", metadata={"kind": "memory"})

    def publish(self, stage_id: str, artifacts: Sequence[ArtifactRef]) -> None:
        if stage_id in self._fail_publish:
            raise ImageStoreError(f"Cannot publish stage '{stage_id}'", stage_id=stage_id)
        self.publications.append((stage_id, list(artifacts)))

    @property
    def published_stages(self) -> list[str]:
        return [stage_id for stage_id, _ in self.publications]
