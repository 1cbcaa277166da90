"""
Persistent State Store

Flat JSON records under ``.threadwork/state``, one file per concern. Every
record carries a schema version and a last-updated timestamp. Reads never
fail: a missing or corrupt record yields the model defaults.
"""

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

logger = structlog.get_logger()

SCHEMA_VERSION = "1"

PROJECT_FILE = "project.json"
TOKEN_LOG_FILE = "token-log.json"
RALPH_STATE_FILE = "ralph-state.json"
GATE_CACHE_FILE = ".gate-cache.json"
QUALITY_CONFIG_FILE = "quality-config.json"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StateRecord(BaseModel):
    """Base for every persisted record"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    schema_version: str = SCHEMA_VERSION
    updated_at: Optional[datetime] = None


R = TypeVar("R", bound=StateRecord)


class StateStore:
    """
    Reads and writes state records for a single project.

    Single writer, read-modify-write. There is no locking: only one agent
    session is assumed to be active per project.
    """

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)

    def path(self, filename: str) -> Path:
        return self.state_dir / filename

    def exists(self, filename: str) -> bool:
        return self.path(filename).exists()

    def read(self, filename: str, model: Type[R]) -> R:
        """Read a record, returning model defaults if absent or corrupt"""
        raw = self.read_raw(filename)
        if raw is None:
            return model()
        try:
            return model.model_validate(raw)
        except ValidationError as e:
            logger.warning(
                "Invalid state record, using defaults",
                file=filename,
                error=str(e),
            )
            return model()

    def read_raw(self, filename: str) -> Optional[Dict[str, Any]]:
        """Read a record as a plain dict. Returns None if the file is missing."""
        p = self.path(filename)
        if not p.exists():
            return None
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Corrupt state file, ignoring", file=filename, error=str(e))
            return {}
        if not isinstance(data, dict):
            logger.warning("State file is not an object, ignoring", file=filename)
            return {}
        return data

    def write(self, filename: str, record: StateRecord) -> None:
        """Write a record, stamping version and timestamp"""
        record.schema_version = SCHEMA_VERSION
        record.updated_at = utcnow()
        self.write_raw(filename, record.model_dump(mode="json"), stamp=False)

    def write_raw(self, filename: str, data: Dict[str, Any], stamp: bool = True) -> None:
        """Write a plain dict atomically"""
        if stamp:
            data = {
                **data,
                "schema_version": SCHEMA_VERSION,
                "updated_at": utcnow().isoformat(),
            }
        self.state_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.state_dir), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path(filename))
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise
