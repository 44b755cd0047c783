"""File-backed checkpoint snapshots for the local runner.

The operator only keeps its checkpoint in memory. Whoever drives it
decides when to snapshot; ``LocalRunner`` does so at every window end.
Snapshots are JSON files in a state directory.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from pollsource.lib.checkpoint import CheckpointState

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_STATE_DIR",
    "StateSettings",
    "clear_all_checkpoints",
    "delete_checkpoint",
    "list_checkpoints",
    "load_checkpoint",
    "load_checkpoint_record",
    "save_checkpoint",
]

DEFAULT_STATE_DIR = ".state"
_SUFFIX = "_checkpoint.json"

StateDir = Optional[Union[str, Path]]


class StateSettings(BaseSettings):
    """Environment-based state settings, read from ``POLLSOURCE_*`` variables."""

    state_dir: str = Field(default=DEFAULT_STATE_DIR, description="Checkpoint snapshot directory")

    model_config = SettingsConfigDict(env_prefix="POLLSOURCE_")


def _state_dir(state_dir: StateDir = None) -> Path:
    if state_dir is not None:
        return Path(state_dir)
    return Path(StateSettings().state_dir)


def _checkpoint_path(name: str, state_dir: StateDir = None) -> Path:
    safe = re.sub(r"[^A-Za-z0-9_.-]", "_", name)
    return _state_dir(state_dir) / f"{safe}{_SUFFIX}"


def save_checkpoint(
    name: str,
    checkpoint: CheckpointState,
    *,
    window_id: Optional[int] = None,
    state_dir: StateDir = None,
) -> Path:
    """Write a checkpoint snapshot and return its path.

    The file is written to a temporary name first and renamed, so a crash
    mid-write leaves the previous snapshot intact. The last tuple must be
    JSON serializable; dates and decimals are stored as strings.
    """
    path = _checkpoint_path(name, state_dir)
    path.parent.mkdir(parents=True, exist_ok=True)

    data = {
        "name": name,
        **checkpoint.to_dict(),
        "window_id": window_id,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }

    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
    tmp_path.replace(path)
    logger.debug("Saved checkpoint for %s (window %s)", name, window_id)
    return path


def load_checkpoint_record(name: str, *, state_dir: StateDir = None) -> Optional[Dict[str, Any]]:
    """Return the raw snapshot dict, or None if missing or unreadable."""
    path = _checkpoint_path(name, state_dir)
    if not path.exists():
        logger.debug("No checkpoint found for %s", name)
        return None

    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Invalid checkpoint file for %s: %s", name, e)
        return None


def load_checkpoint(name: str, *, state_dir: StateDir = None) -> Optional[CheckpointState]:
    """Rebuild the last saved checkpoint, or None if there is none."""
    record = load_checkpoint_record(name, state_dir=state_dir)
    if record is None:
        return None
    try:
        checkpoint = CheckpointState.from_dict(record)
    except (TypeError, ValueError) as e:
        logger.warning("Corrupt checkpoint for %s: %s", name, e)
        return None
    logger.info(
        "Restored checkpoint for %s (%d tuples emitted, last at %s)",
        name,
        checkpoint.emitted_count,
        record.get("last_timestamp"),
    )
    return checkpoint


def delete_checkpoint(name: str, *, state_dir: StateDir = None) -> bool:
    """Delete a snapshot. Returns False if it did not exist."""
    path = _checkpoint_path(name, state_dir)
    if path.exists():
        path.unlink()
        logger.info("Deleted checkpoint for %s", name)
        return True
    return False


def list_checkpoints(*, state_dir: StateDir = None) -> Dict[str, Dict[str, Any]]:
    """Map of snapshot name to raw snapshot data."""
    directory = _state_dir(state_dir)
    if not directory.exists():
        return {}

    checkpoints: Dict[str, Dict[str, Any]] = {}
    for path in sorted(directory.glob(f"*{_SUFFIX}")):
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Invalid checkpoint file %s: %s", path, e)
            continue
        checkpoints[data.get("name") or path.name[: -len(_SUFFIX)]] = data
    return checkpoints


def clear_all_checkpoints(*, state_dir: StateDir = None) -> int:
    """Delete every snapshot in the state directory. Returns the count."""
    directory = _state_dir(state_dir)
    if not directory.exists():
        return 0

    count = 0
    for path in directory.glob(f"*{_SUFFIX}"):
        path.unlink()
        count += 1
    logger.info("Cleared %d checkpoints", count)
    return count
