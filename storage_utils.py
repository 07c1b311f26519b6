"""On-disk artifact store (save, lookup by hash, listing and expiry)."""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    from .logging_utils import OperationLog
    from .models import Artifact
    from .pipeline_common import default_artifact_dir
except Exception:
    from logging_utils import OperationLog
    from models import Artifact
    from pipeline_common import default_artifact_dir

PREFIX = "artifact-"
EXTENSIONS = {"image/svg+xml": ".svg", "text/html": ".html", "text/plain": ".txt"}
MIME_BY_EXT = {v: k for k, v in EXTENSIONS.items()}


def _hash_from_name(name: str) -> str:
    parts = name.split("-")
    return parts[1] if len(parts) >= 3 else ""


class ArtifactStore:
    def __init__(self, root: Optional[Path] = None, ops: Optional[OperationLog] = None) -> None:
        """Initialize.

        Args:
            root (Optional[Path]):
            ops (Optional[OperationLog]):

        Returns:
            None:
        """
        self.root = Path(root) if root is not None else default_artifact_dir()
        self.root.mkdir(parents=True, exist_ok=True)
        self.ops = ops or OperationLog()

    def _find(self, content_hash: str) -> Optional[Path]:
        matches = sorted(self.root.glob(f"{PREFIX}{content_hash}-*"))
        return matches[-1] if matches else None

    def save(self, artifact: Artifact) -> Path:
        """Save.

        Args:
            artifact (Artifact):

        Returns:
            Path:
        """
        existing = self._find(artifact.content_hash)
        if existing is not None:
            existing.touch()
            return existing
        ext = EXTENSIONS.get(artifact.mime_type, ".bin")
        stamp = datetime.now().strftime("%Y%m%d%H%M%S%f")
        path = self.root / f"{PREFIX}{artifact.content_hash}-{stamp}{ext}"
        path.write_bytes(artifact.payload)
        self.ops.record("save", path=str(path), hash=artifact.content_hash, size=artifact.size_bytes)
        return path

    def get(self, content_hash: str) -> Optional[Artifact]:
        """Get an artifact by hash.

        Args:
            content_hash (str):

        Returns:
            Optional[Artifact]:
        """
        path = self._find(content_hash)
        if path is None:
            self.ops.record("get_not_found", hash=content_hash)
            return None
        payload = path.read_bytes()
        self.ops.record("get", path=str(path), hash=content_hash, size=len(payload))
        return Artifact(
            content_hash=content_hash,
            mime_type=MIME_BY_EXT.get(path.suffix, "text/plain"),
            payload=payload,
            created_at=datetime.fromtimestamp(path.stat().st_mtime),
        )

    def list_files(self) -> List[Dict[str, Any]]:
        """List stored artifacts, newest first.

        Returns:
            List[Dict[str, Any]]:
        """
        files = []
        for p in self.root.glob(f"{PREFIX}*"):
            if not p.is_file():
                continue
            st = p.stat()
            files.append(
                {
                    "name": p.name,
                    "path": str(p),
                    "hash": _hash_from_name(p.name),
                    "size": st.st_size,
                    "modified": datetime.fromtimestamp(st.st_mtime).isoformat(timespec="seconds"),
                    "modified_ts": st.st_mtime,
                }
            )
        files.sort(key=lambda f: f["modified_ts"], reverse=True)
        self.ops.record("list_files", count=len(files), directory=str(self.root))
        return files

    def purge(self, max_age_seconds: float = 24 * 60 * 60) -> int:
        """Delete artifacts older than ``max_age_seconds``.

        Args:
            max_age_seconds (float):

        Returns:
            int: Number of files removed.
        """
        now = datetime.now().timestamp()
        removed = 0
        total = 0
        for p in self.root.glob(f"{PREFIX}*"):
            if not p.is_file():
                continue
            total += 1
            if now - p.stat().st_mtime > max_age_seconds:
                p.unlink(missing_ok=True)
                removed += 1
        self.ops.record("cleanup", deleted=removed, total=total, max_age_hours=max_age_seconds / 3600)
        return removed
