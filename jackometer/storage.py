"""
Per-user panel storage.

Every panel keeps one JSON blob per user, stored as a string under a
``jackometer_<panel>`` key inside a single JSON file. Blobs that no longer
parse are dropped and the caller falls back to its defaults; writes that
would push a user past the storage quota are logged and skipped.
"""
import os
import json
import threading

from jackometer import config
from jackometer.config import setup_logger

logger = setup_logger(__name__)

DB = config.DB
QUOTA_BYTES = config.STORAGE_QUOTA_BYTES

_lock = threading.RLock()


class StorageQuotaError(Exception):
    pass


def storage_key(panel):
    return f"jackometer_{panel}"


def _load():
    if not os.path.exists(DB):
        return {}
    with open(DB) as f:
        try:
            return json.load(f)
        except ValueError:
            logger.warning("Store %s is unreadable, starting empty", DB)
            return {}

def _save(data):
    with open(DB, "w") as f:
        json.dump(data, f, indent=4)

def _usage(blobs):
    return sum(len(k) + len(v) for k, v in blobs.items())


def get_item(user, panel):
    """Raw stored string for a user's panel, or None."""
    with _lock:
        return _load().get(user, {}).get(storage_key(panel))


def set_item(user, panel, blob):
    with _lock:
        data = _load()
        blobs = data.setdefault(user, {})
        candidate = dict(blobs)
        candidate[storage_key(panel)] = blob
        if _usage(candidate) > QUOTA_BYTES:
            raise StorageQuotaError(
                f"Quota of {QUOTA_BYTES} bytes exceeded for {user!r}")
        data[user] = candidate
        _save(data)


def remove_item(user, panel):
    with _lock:
        data = _load()
        if storage_key(panel) in data.get(user, {}):
            del data[user][storage_key(panel)]
            _save(data)


def load_state(user, panel, default):
    """
    Load a panel's state, merged over a copy of ``default``.

    Missing or corrupt blobs yield the defaults. Keys absent from the stored
    state are filled from the defaults, so older blobs pick up new fields.
    """
    state = json.loads(json.dumps(default))
    raw = get_item(user, panel)
    if raw is None:
        return state
    try:
        stored = json.loads(raw)
    except ValueError:
        logger.debug("Discarding corrupt %s blob for %s", panel, user)
        return state
    if not isinstance(stored, dict):
        return state
    state.update(stored)
    return state


def save_state(user, panel, state) -> bool:
    """Persist a panel's state. Returns False when the write was dropped."""
    try:
        set_item(user, panel, json.dumps(state))
    except StorageQuotaError as e:
        logger.error("Storage error: %s", e)
        return False
    return True
