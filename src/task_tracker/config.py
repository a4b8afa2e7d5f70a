"""Runtime configuration for the task tracker."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

SUPPORTED_WORKFLOWS = ("standard", "verification")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
PROJECT_ID_ENV = "TASK_TRACKER_PROJECT_ID"


@dataclass(slots=True)
class CoordinationSettings:
    """Limits and workflow selection for the task coordination core."""

    workflow: str = "standard"
    bulk_max_items: int = 100
    context_max_bytes: int = 65_536
    tree_max_depth: int = 5


@dataclass(slots=True)
class SessionSettings:
    """Defaults for the acting agent and the selected project."""

    agent_id: str | None = None
    project_id: str | None = None


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".task_tracker.db")
    sqlite_busy_timeout_ms: int = 5_000
    log_level: str = "WARNING"
    coordination: CoordinationSettings = field(default_factory=CoordinationSettings)
    session: SessionSettings = field(default_factory=SessionSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local use."""

        return cls(
            db_path=db_path or Path(os.getenv("TASK_TRACKER_DB_PATH", ".task_tracker.db")),
            sqlite_busy_timeout_ms=int(
                os.getenv("TASK_TRACKER_SQLITE_BUSY_TIMEOUT_MS", "5000"),
            ),
            log_level=os.getenv("TASK_TRACKER_LOG_LEVEL", "WARNING").strip().upper(),
            coordination=CoordinationSettings(
                workflow=os.getenv("TASK_TRACKER_WORKFLOW", "standard").strip().lower(),
                bulk_max_items=int(os.getenv("TASK_TRACKER_BULK_MAX_ITEMS", "100")),
                context_max_bytes=int(os.getenv("TASK_TRACKER_CONTEXT_MAX_BYTES", "65536")),
                tree_max_depth=int(os.getenv("TASK_TRACKER_TREE_MAX_DEPTH", "5")),
            ),
            session=SessionSettings(
                agent_id=_env_optional("TASK_TRACKER_AGENT_ID"),
                project_id=_env_optional(PROJECT_ID_ENV),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if any value is out of range."""

        if self.coordination.workflow not in SUPPORTED_WORKFLOWS:
            raise ValueError(
                "TASK_TRACKER_WORKFLOW must be one of "
                f"{', '.join(SUPPORTED_WORKFLOWS)}, got {self.coordination.workflow!r}.",
            )
        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("TASK_TRACKER_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.coordination.bulk_max_items <= 0:
            raise ValueError("TASK_TRACKER_BULK_MAX_ITEMS must be a positive integer.")
        if self.coordination.context_max_bytes <= 0:
            raise ValueError("TASK_TRACKER_CONTEXT_MAX_BYTES must be a positive integer.")
        if self.coordination.tree_max_depth < 0:
            raise ValueError("TASK_TRACKER_TREE_MAX_DEPTH must be >= 0.")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(
                f"Invalid TASK_TRACKER_LOG_LEVEL: {self.log_level!r}. "
                f"Expected one of {', '.join(_LOG_LEVELS)}.",
            )

    def logging_level(self) -> int:
        return logging.getLevelName(self.log_level)


def _env_optional(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None
