"""R runtime wrapper and the execution gateway that turns R chunks into artifacts."""
from __future__ import annotations

import logging
import re
import shutil
import subprocess
import tempfile
import threading
import time
import weakref
from pathlib import Path
from typing import Optional

try:
    from .cache_utils import ContentCache, content_hash
    from .logging_utils import OperationLog
    from .models import Artifact
    from .pipeline_common import (
        ArtifactTooLarge,
        ExecutionError,
        ExecutionTimeout,
        OutputMissing,
        RuntimeFailure,
    )
    from .storage_utils import ArtifactStore
except Exception:
    from cache_utils import ContentCache, content_hash
    from logging_utils import OperationLog
    from models import Artifact
    from pipeline_common import (
        ArtifactTooLarge,
        ExecutionError,
        ExecutionTimeout,
        OutputMissing,
        RuntimeFailure,
    )
    from storage_utils import ArtifactStore

logger = logging.getLogger("topic2deck")

MODES = ("svg", "table", "generic", "document")
KIND_TO_MODE = {"plot": "svg", "table": "table", "generic": "generic"}
MODE_TO_MIME = {"svg": "image/svg+xml", "table": "text/html", "generic": "text/plain"}

# Only knitr/kableExtra output can be serialized by the table script.
TABLE_CALL_RE = re.compile(r"\b(?:knitr::|kableExtra::)?(?:kable|kbl|kable_styling)\s*\(")


def classify_kind(code: str) -> str:
    """Guess whether an R chunk builds a table or draws a plot.

    Args:
        code (str):

    Returns:
        str: ``"table"`` or ``"plot"``
    """
    return "table" if TABLE_CALL_RE.search(code or "") else "plot"


def _r_string(path: Path) -> str:
    s = path.as_posix().replace("\\", "\\\\").replace("'", "\\'")
    return f"'{s}'"


def _tail(s: str, n: int = 2000) -> str:
    return (s or "")[-n:]


class RRuntime:
    """Runs R code through ``Rscript`` in a private scratch directory."""

    def __init__(self, rscript: Optional[str] = None, timeout: float = 60.0) -> None:
        self.rscript = rscript
        self.timeout = timeout

    def _executable(self) -> str:
        exe = self.rscript or shutil.which("Rscript")
        if not exe:
            raise RuntimeFailure("Rscript not found. Install R and ensure `Rscript` is on PATH.")
        return exe

    @staticmethod
    def build_script(code: str, mode: str, work: Path) -> str:
        """Build the R script for ``mode``.

        Args:
            code (str):
            mode (str):
            work (Path): Scratch directory holding inputs and outputs.

        Returns:
            str:
        """
        out = _r_string(work / "output")
        if mode == "svg":
            return "\n".join(
                [
                    f"svg({out}, width = 8, height = 5)",
                    code,
                    "invisible(dev.off())",
                ]
            )
        if mode == "table":
            return "\n".join(
                [
                    "options(knitr.table.format = 'html')",
                    "suppressPackageStartupMessages({library(knitr); library(kableExtra)})",
                    "result <- local({",
                    code,
                    "})",
                    "if (inherits(result, c('knitr_kable', 'kableExtra'))) {",
                    "  html_table <- result",
                    "} else {",
                    "  html_table <- kable_styling(kable(result, format = 'html'),",
                    "    bootstrap_options = c('striped', 'hover', 'condensed'))",
                    "}",
                    f"writeLines(as.character(html_table), {out})",
                ]
            )
        if mode == "document":
            return "\n".join(
                [
                    "suppressPackageStartupMessages(library(rmarkdown))",
                    f"rmarkdown::render({_r_string(work / 'input.Rmd')}, output_file = {out}, quiet = TRUE)",
                ]
            )
        return code

    def run(self, code: str, mode: str = "generic") -> str:
        """Execute ``code`` and return its rendered output.

        Args:
            code (str):
            mode (str): One of ``svg``, ``table``, ``generic``, ``document``.

        Returns:
            str:
        """
        if mode not in MODES:
            raise ValueError(f"Unknown R execution mode: {mode}")
        exe = self._executable()
        with tempfile.TemporaryDirectory(prefix="topic2deck_r_") as tmp:
            work = Path(tmp)
            if mode == "document":
                (work / "input.Rmd").write_text(code, encoding="utf-8")
            script = work / "script.R"
            script.write_text(self.build_script(code, mode, work), encoding="utf-8")
            cmd = [exe, "--vanilla", str(script)]
            try:
                r = subprocess.run(cmd, cwd=str(work), capture_output=True, text=True, timeout=self.timeout)
            except subprocess.TimeoutExpired as exc:
                raise ExecutionTimeout(f"R did not finish within {self.timeout:g}s") from exc
            except OSError as exc:
                raise RuntimeFailure(f"Could not start Rscript: {exc}") from exc
            if r.returncode != 0:
                raise RuntimeFailure(_tail((r.stderr or "") + "\n" + (r.stdout or "")).strip())
            if mode == "generic":
                return r.stdout or ""
            out_path = work / "output"
            if not out_path.exists() or out_path.stat().st_size == 0:
                raise OutputMissing(f"R produced no {mode} output")
            return out_path.read_text(encoding="utf-8", errors="replace")


class ExecutionGateway:
    """Executes R chunks at most once per distinct code body.

    Results are looked up in the content cache before the runtime is touched;
    concurrent calls for the same body wait on a per-hash lock so only one of
    them reaches the runtime.
    """

    def __init__(
        self,
        runtime: Optional[RRuntime] = None,
        cache: Optional[ContentCache] = None,
        store: Optional[ArtifactStore] = None,
        ops: Optional[OperationLog] = None,
    ) -> None:
        self.runtime = runtime or RRuntime()
        self.ops = ops or OperationLog()
        self.cache = cache if cache is not None else ContentCache(ops=self.ops)
        self.store = store
        # Entries vanish once no execution holds the lock.
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def execute(self, code: str, kind: str = "plot") -> Artifact:
        """Execute an R chunk and return its artifact.

        Args:
            code (str):
            kind (str): ``plot``, ``table`` or ``generic``.

        Returns:
            Artifact:
        """
        if kind not in KIND_TO_MODE:
            raise ValueError(f"Unknown block kind: {kind}")
        key = content_hash(code)
        with self._lock_for(key):
            cached = self.cache.get(key)
            if cached is not None:
                self.ops.record("cache_hit", hash=key, kind=kind)
                return cached
            self.ops.record("cache_miss", hash=key, kind=kind)

            mode = KIND_TO_MODE[kind]
            t0 = time.monotonic()
            try:
                output = self.runtime.run(code, mode)
            except ExecutionError as exc:
                elapsed = round((time.monotonic() - t0) * 1000)
                logger.warning("R chunk %s failed (%s): %s", key[:12], exc.kind, exc.detail[:200])
                self.ops.record(
                    "execute_error", hash=key, kind=kind, error=exc.kind,
                    detail=exc.detail[:500], elapsed_ms=elapsed,
                )
                raise
            elapsed = round((time.monotonic() - t0) * 1000)

            artifact = Artifact(content_hash=key, mime_type=MODE_TO_MIME[mode], payload=output.encode("utf-8"))
            self.ops.record(
                "execute", hash=key, kind=kind, mode=mode,
                size=artifact.size_bytes, elapsed_ms=elapsed, code=code[:500],
            )
            try:
                self.cache.put(key, artifact)
            except ArtifactTooLarge as exc:
                logger.warning("Not caching artifact %s: %s", key[:12], exc)
            if self.store is not None and artifact.mime_type == "image/svg+xml":
                try:
                    self.store.save(artifact)
                except OSError:
                    logger.warning("Failed to persist artifact %s", key[:12], exc_info=True)
            return artifact
