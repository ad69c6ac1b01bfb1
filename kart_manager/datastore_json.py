"""Local JSON file storage, used when no DATABASE_URL is configured.

The file holds ``{"event": <EventState or null>, "sessions": [...]}`` and is
rewritten whole on every save.
"""

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Data directory lives at the project root under ``data``.
DATA_DIR = Path(__file__).resolve().parent.parent / "data"
DEFAULT_STORE_PATH = DATA_DIR / "store.json"

# Serialises read-modify-write cycles on the shared file within one process
_LOCK = threading.RLock()


def store_path() -> Path:
    return Path(os.environ.get("KART_STORE_PATH") or DEFAULT_STORE_PATH)


def _empty_store() -> Dict[str, Any]:
    return {"event": None, "sessions": []}


def load_data() -> Dict[str, Any]:
    path = store_path()
    if not path.exists():
        return _empty_store()
    with path.open(encoding="utf-8") as f:
        data = json.load(f)
    out = _empty_store()
    out.update(data or {})
    return out


def save_data(data: Dict[str, Any]) -> None:
    """Write the store atomically (temp file in the same directory, then rename)."""
    path = store_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=".store-", suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def load_event() -> Optional[Dict[str, Any]]:
    return load_data().get("event")


@contextmanager
def _updating():
    """Yield the loaded store and write it back, holding the lock throughout."""
    with _LOCK:
        data = load_data()
        yield data
        save_data(data)


def save_event(state: Dict[str, Any]) -> None:
    with _updating() as data:
        data["event"] = state
    logger.debug("event_saved round=%s path=%s", state.get("current_round"), store_path())


def delete_event() -> None:
    with _updating() as data:
        data["event"] = None


def list_sessions() -> List[Dict[str, Any]]:
    sessions = list(load_data().get("sessions") or [])
    sessions.sort(key=lambda s: s.get("created_at") or "", reverse=True)
    return sessions


def get_session(session_id: str) -> Optional[Dict[str, Any]]:
    for session in load_data().get("sessions") or []:
        if session.get("id") == session_id:
            return session
    return None


def save_session(session: Dict[str, Any]) -> None:
    with _updating() as data:
        sessions = [s for s in data.get("sessions") or [] if s.get("id") != session["id"]]
        sessions.append(session)
        data["sessions"] = sessions


def delete_session(session_id: str) -> bool:
    with _LOCK:
        data = load_data()
        sessions = data.get("sessions") or []
        remaining = [s for s in sessions if s.get("id") != session_id]
        if len(remaining) == len(sessions):
            return False
        data["sessions"] = remaining
        save_data(data)
    return True


def check_connection() -> Dict[str, Any]:
    path = store_path()
    return {"path": str(path), "exists": path.exists()}
