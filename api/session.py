"""
api/session.py — per-browser state keyed by a cookie

A browser owns at most one ProctoredSession at a time plus its Gemini key and
the id of its last result. Idle entries expire after SESSION_TTL; whoever
removes an entry is responsible for closing the proctor it holds.
"""

import threading
import time
import uuid
from typing import Any, List

from config import SESSION_TTL

_lock = threading.Lock()
_states: dict[str, dict[str, Any]] = {}
_last_seen: dict[str, float] = {}


def _blank() -> dict[str, Any]:
    return {"api_key": "", "proctor": None, "last_result_id": None}


def _expired(sid: str, now: float) -> bool:
    return now - _last_seen[sid] > SESSION_TTL


def create_session() -> str:
    sid = uuid.uuid4().hex
    with _lock:
        _states[sid] = _blank()
        _last_seen[sid] = time.time()
    return sid


def get_session(sid: str) -> dict[str, Any] | None:
    """State for a live session id; None if unknown. Expired ids are left for cleanup_expired()."""
    now = time.time()
    with _lock:
        if sid not in _states or _expired(sid, now):
            return None
        _last_seen[sid] = now
        return _states[sid]


def get(sid: str, key: str, default=None):
    state = get_session(sid)
    if state is None:
        return default
    return state.get(key, default)


def put(sid: str, key: str, value) -> None:
    with _lock:
        if sid in _states:
            _states[sid][key] = value
            _last_seen[sid] = time.time()


def take(sid: str, key: str, default=None):
    """Remove and return a value (used to hand a proctor over for closing)."""
    with _lock:
        state = _states.get(sid)
        if state is None:
            return default
        value = state.get(key, default)
        state[key] = _blank().get(key)
        return value


def reset(sid: str) -> None:
    """Fresh state for the id; the API key survives."""
    with _lock:
        if sid in _states:
            api_key = _states[sid].get("api_key", "")
            _states[sid] = _blank()
            _states[sid]["api_key"] = api_key
            _last_seen[sid] = time.time()


def cleanup_expired() -> List[dict[str, Any]]:
    """Drop idle sessions and return their state."""
    now = time.time()
    with _lock:
        stale = [sid for sid in _states if _expired(sid, now)]
        removed = [_states.pop(sid) for sid in stale]
        for sid in stale:
            del _last_seen[sid]
    return removed


def drain_all() -> List[dict[str, Any]]:
    """Drop every session (server shutdown) and return their state."""
    with _lock:
        removed = list(_states.values())
        _states.clear()
        _last_seen.clear()
    return removed
