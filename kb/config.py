"""
Configuration

Plain dataclass with defaults, overridable from the environment.
Command-line arguments override both.
"""

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os


DEFAULT_KB_PATH = "kb/kb.json"
DEFAULT_ACTOR = "script:kb_cli"


@dataclass
class KBConfig:
    """Paths and runtime settings for one knowledge base."""
    kb_path: Path = Path(DEFAULT_KB_PATH)
    index_dir: Optional[Path] = None
    published_dir: Optional[Path] = None
    snapshot_dir: Optional[Path] = None
    source_timestamp: Optional[str] = None
    log_level: str = "INFO"
    actor: str = DEFAULT_ACTOR
    fetch_timeout: float = 30.0
    user_agent: str = "ProvenanceKB/1.0"

    def __post_init__(self):
        self.kb_path = Path(self.kb_path)
        base = self.kb_path.parent
        if self.index_dir is None:
            self.index_dir = base / "indexes"
        if self.published_dir is None:
            self.published_dir = base / "published"
        if self.snapshot_dir is None:
            self.snapshot_dir = base / "snapshots"
        self.index_dir = Path(self.index_dir)
        self.published_dir = Path(self.published_dir)
        self.snapshot_dir = Path(self.snapshot_dir)

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None, **overrides) -> KBConfig:
        """
        Build from KB_* / SOURCE_TIMESTAMP variables; keyword overrides that
        are not None take precedence.
        """
        env = os.environ if environ is None else environ

        def _path(name: str) -> Optional[Path]:
            value = env.get(name)
            return Path(value) if value else None

        values = {
            "kb_path": Path(env.get("KB_PATH", DEFAULT_KB_PATH)),
            "index_dir": _path("KB_INDEX_DIR"),
            "published_dir": _path("KB_PUBLISHED_DIR"),
            "snapshot_dir": _path("KB_SNAPSHOT_DIR"),
            "source_timestamp": env.get("SOURCE_TIMESTAMP") or None,
            "log_level": env.get("KB_LOG_LEVEL", "INFO"),
            "actor": env.get("KB_ACTOR", DEFAULT_ACTOR),
            "fetch_timeout": float(env.get("KB_FETCH_TIMEOUT", "30.0")),
            "user_agent": env.get("KB_USER_AGENT", "ProvenanceKB/1.0"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return KBConfig(**values)
