from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger("topic2deck")
TQDM_NCOLS = 100

DEFAULT_MODEL = "deepseek/deepseek-chat-v3-0324:free"
DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_SITE_URL = "http://localhost:8501"
APP_TITLE = "Research Assistant"


class Topic2DeckError(Exception):
    """Base class for every pipeline failure."""


class QueryError(Topic2DeckError):
    pass


class NetworkError(QueryError):
    pass


class HTTPStatusError(NetworkError):
    def __init__(self, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        self.detail = detail
        msg = f"API request failed with status {status_code}"
        if detail:
            msg += f": {detail[:200]}"
        super().__init__(msg)


class InvalidResponseFormat(QueryError):
    pass


class TransformError(Topic2DeckError):
    pass


class EmptySourceDocument(TransformError):
    pass


class EmptyOutline(TransformError):
    pass


class ExecutionError(Topic2DeckError):
    kind = "RuntimeFailure"

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(f"{self.kind}: {detail}" if detail else self.kind)


class RuntimeFailure(ExecutionError):
    kind = "RuntimeFailure"


class ExecutionTimeout(ExecutionError):
    kind = "Timeout"


class OutputMissing(ExecutionError):
    kind = "OutputMissing"


class ArtifactTooLarge(Topic2DeckError):
    def __init__(self, size_bytes: int, max_size: int) -> None:
        self.size_bytes = size_bytes
        self.max_size = max_size
        super().__init__(f"Artifact of {size_bytes} bytes exceeds cache limit of {max_size} bytes")


class RenderError(Topic2DeckError):
    pass


def _storage_dir() -> Path:
    return Path.home() / ".topic2deck"


def default_root_dir() -> Path:
    env = os.environ.get("TOPIC2DECK_ROOT_DIR", "").strip()
    return Path(env).expanduser() if env else Path.home() / "topic2deck_runs"


def default_artifact_dir() -> Path:
    env = os.environ.get("TOPIC2DECK_ARTIFACT_DIR", "").strip()
    return Path(env).expanduser() if env else _storage_dir() / "artifacts"


@dataclass
class RunConfig:
    llm_model: str = DEFAULT_MODEL
    llm_api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    site_url: str = DEFAULT_SITE_URL
    app_title: str = APP_TITLE
    research_max_tokens: int = 4000
    outline_max_tokens: int = 2000
    streaming: bool = True
    out_dir: Path = field(default_factory=lambda: default_root_dir() / "latest")
    r_timeout: float = 60.0
    max_cache_size: int = 5 * 1024 * 1024
    max_workers: int = 1
    render: bool = True
    marp_command: str = ""
    artifact_dir: Optional[Path] = None
    verbose: bool = False

    @classmethod
    def from_env(cls, **overrides) -> "RunConfig":
        """Build a config from environment variables.

        Args:
            **overrides: Field values that win over the environment.

        Returns:
            RunConfig:
        """
        values: Dict[str, object] = {
            "llm_api_key": os.environ.get("OPENROUTER_API_KEY", ""),
            "llm_model": os.environ.get("TOPIC2DECK_MODEL", "") or DEFAULT_MODEL,
            "base_url": os.environ.get("TOPIC2DECK_BASE_URL", "") or DEFAULT_BASE_URL,
            "site_url": os.environ.get("TOPIC2DECK_SITE_URL", "") or DEFAULT_SITE_URL,
            "marp_command": os.environ.get("TOPIC2DECK_MARP", ""),
            "artifact_dir": default_artifact_dir(),
        }
        timeout = os.environ.get("TOPIC2DECK_R_TIMEOUT", "").strip()
        if timeout:
            try:
                values["r_timeout"] = float(timeout)
            except ValueError:
                logger.warning("Ignoring invalid TOPIC2DECK_R_TIMEOUT=%r", timeout)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class RunOutputStore:
    def __init__(self, out_dir: Path) -> None:
        self.out_dir = Path(out_dir)
        self.out_dir.mkdir(parents=True, exist_ok=True)

    def save(self, name: str, content: str) -> Path:
        path = self.out_dir / name
        path.write_text(content, encoding="utf-8")
        return path
