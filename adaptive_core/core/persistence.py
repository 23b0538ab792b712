# ═══════════════════════════════════════════════════════════════════════════════
# PERSISTENCE
# Versioned state envelopes written through a StoragePort
# ═══════════════════════════════════════════════════════════════════════════════


"""
Every engine serializes itself to a plain dict. This module wraps that dict
in a versioned envelope:

    {"version": "1.1", "kind": "strategy_engine", "saved_at": ..., "state": {...}}

Loading checks the envelope and hands the raw state dict back. Engines apply
their own defaults for fields an older version did not write, so a blob from
1.0 restores cleanly into 1.1.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import numpy as np
from loguru import logger

from adaptive_core.core.storage import StoragePort


STATE_VERSION = "1.1"
SUPPORTED_MAJOR = "1."


# ── Exceptions ───────────────────────────────────────────────────────────────


class PersistenceError(Exception):
    """Base class for persistence errors."""
    pass


class StateCorruptionError(PersistenceError):
    """Raised when saved state is unreadable, of the wrong kind, or unsupported."""
    pass


# ── Result Dataclasses ───────────────────────────────────────────────────────


@dataclass
class SaveResult:
    key: str
    kind: str
    version: str
    saved_at: str
    size_bytes: int


class _NumpyEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy types."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.bool_):
            return bool(obj)
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        return super().default(obj)


# ── Envelope ─────────────────────────────────────────────────────────────────


def encode_envelope(kind: str, state: Dict[str, Any]) -> str:
    envelope = {
        "version": STATE_VERSION,
        "kind": kind,
        "saved_at": datetime.now().isoformat(),
        "state": state,
    }
    return json.dumps(envelope, indent=2, cls=_NumpyEncoder)


def decode_envelope(raw: str, kind: str) -> Dict[str, Any]:
    """
    Parse an envelope and return its state dict.

    Raises:
        StateCorruptionError: If the blob is not JSON, is not an envelope,
            has an unsupported version, or belongs to a different engine.
    """
    try:
        envelope = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise StateCorruptionError(f"Unreadable state blob: {e}") from e

    if not isinstance(envelope, dict):
        raise StateCorruptionError("State blob is not an object")

    # Blobs written before envelopes existed are bare state dicts.
    if "state" not in envelope:
        return envelope

    version = str(envelope.get("version", "1.0"))
    if not version.startswith(SUPPORTED_MAJOR):
        raise StateCorruptionError(f"Unsupported version: {version}")

    saved_kind = envelope.get("kind", kind)
    if saved_kind != kind:
        raise StateCorruptionError(f"Expected {kind} state, found {saved_kind}")

    state = envelope["state"]
    if not isinstance(state, dict):
        raise StateCorruptionError("Envelope state is not an object")
    return state


# ── Storage Round Trip ───────────────────────────────────────────────────────


def save_state(
    storage: StoragePort, key: str, kind: str, state: Dict[str, Any]
) -> SaveResult:
    """Encode state and write it under key."""
    blob = encode_envelope(kind, state)
    storage.put(key, blob)
    return SaveResult(
        key=key,
        kind=kind,
        version=STATE_VERSION,
        saved_at=datetime.now().isoformat(),
        size_bytes=len(blob.encode("utf-8")),
    )


def load_state(storage: StoragePort, key: str, kind: str) -> Optional[Dict[str, Any]]:
    """
    Read the state stored under key.

    Returns:
        The state dict, or None when nothing has been saved yet.

    Raises:
        StateCorruptionError: If the stored blob cannot be used.
    """
    raw = storage.get(key)
    if raw is None:
        return None
    return decode_envelope(raw, kind)


def restore_from_storage(engine: Any, storage: StoragePort, key: str, kind: str, label: str) -> bool:
    """
    Load saved state into an engine via its restore_state(dict) method.

    Startup must not fail on this path: a missing, unreadable or corrupt
    blob is logged and the engine keeps its default-initialized state.

    Returns:
        True if saved state was applied.
    """
    try:
        state = load_state(storage, key, kind)
    except PersistenceError as e:
        logger.warning(f"[{label}] Saved state unusable ({e}), using defaults")
        return False
    except (OSError, ValueError) as e:
        logger.warning(f"[{label}] Could not read saved state ({e}), using defaults")
        return False

    if state is None:
        logger.info(f"[{label}] No saved state found, using defaults")
        return False

    try:
        engine.restore_state(state)
    except (KeyError, TypeError, ValueError, AttributeError, IndexError) as e:
        logger.warning(f"[{label}] Saved state is corrupt ({e}), using defaults")
        return False

    logger.info(f"[{label}] Loaded state from '{key}'")
    return True
