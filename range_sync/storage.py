import json
import logging
import os
from pathlib import Path
from typing import Optional

from .exceptions import PersistenceFailed
from .models import PersistedState

logger = logging.getLogger(__name__)


def load_state(state_file: Path) -> Optional[PersistedState]:
    """
    Load the last successfully applied state.

    Returns None when the file is missing or cannot be parsed; the caller then
    takes the bootstrap path (everything is new), which is safe because rule
    creation skips names that already exist remotely.
    """
    if not state_file.exists():
        logger.info("No state file at %s; treating as first run", state_file)
        return None

    logger.info("Loading sync state from %s", state_file)
    try:
        with open(state_file, "r", encoding="utf-8") as fh:
            raw = json.load(fh)
        state = PersistedState.from_dict(raw)
    except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
        logger.error("Failed to parse state file %s: %s; treating as first run", state_file, exc)
        return None

    logger.info(
        "Loaded state from %s: %s ranges (IPv4=%s, IPv6=%s), %s rules, last sync %s",
        state_file,
        state.total_count,
        len(state.ipv4_ranges),
        len(state.ipv6_ranges),
        len(state.synced_rules),
        state.last_sync.isoformat(),
    )
    return state


def save_state(state_file: Path, state: PersistedState) -> Path:
    """
    Persist state to JSON atomically (write temp file, then rename).

    A crash before the rename leaves the previous file untouched.

    Raises:
        PersistenceFailed: if the file cannot be written.
    """
    tmp_file = state_file.with_name(state_file.name + ".tmp")
    logger.info("Saving sync state to %s", state_file)
    try:
        state_file.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_file, "w", encoding="utf-8") as f:
            json.dump(state.to_dict(), f, indent=2, sort_keys=True)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_file, state_file)
    except OSError as exc:
        try:
            tmp_file.unlink(missing_ok=True)
        except OSError as cleanup_exc:
            logger.warning("Could not remove temporary state file %s: %s", tmp_file, cleanup_exc)
        raise PersistenceFailed(f"Failed to write state file {state_file}: {exc}") from exc

    return state_file
