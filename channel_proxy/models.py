"""Data models for update jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from channel_proxy.config import NIXEXPRS_FILENAME


class JobStage(Enum):
    """Where an update job currently is."""

    IDLE = "idle"
    FETCHING = "fetching"
    UNPACKING = "unpacking"
    BUILDING = "building"
    PUBLISHING = "publishing"


class JobStatus(Enum):
    """Terminal status of an update job."""

    SUCCESS = "success"
    FAILED = "failed"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class UpdateJob:
    """One pipeline run. Owns ``tmp_dir`` exclusively until it finishes."""

    job_id: int
    tmp_dir: Path
    stage: JobStage = JobStage.IDLE
    nixpkgs_root: Path | None = None

    @property
    def archive_path(self) -> Path:
        return self.tmp_dir / NIXEXPRS_FILENAME

    @property
    def unpack_dir(self) -> Path:
        return self.tmp_dir / "unpack"


@dataclass
class JobOutcome:
    """Result of a finished update job."""

    job_id: int
    status: JobStatus
    failed_stage: JobStage | None = None
    error: str | None = None
    steps_completed: list[str] = field(default_factory=list)
    started_at: str = field(default_factory=_now_iso)
    completed_at: str | None = None
    duration_seconds: float | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is JobStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "error": self.error,
            "steps_completed": list(self.steps_completed),
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_seconds": self.duration_seconds,
        }
