import os
from typing import Any, Dict, List, Optional

# Datastore proxy.
# PostgreSQL is used whenever DATABASE_URL is set; otherwise everything goes to
# the local JSON store file.  The choice is made per call so tests and scripts
# can switch backends through the environment.

from . import datastore_json as _json
from . import datastore_pg as _pg


def backend_name() -> str:
    return "postgres" if os.environ.get("DATABASE_URL") else "json"


def _backend():
    return _pg if backend_name() == "postgres" else _json


def load_event() -> Optional[Dict[str, Any]]:
    return _backend().load_event()


def save_event(state: Dict[str, Any]) -> None:
    _backend().save_event(state)


def delete_event() -> None:
    _backend().delete_event()


def list_sessions() -> List[Dict[str, Any]]:
    return _backend().list_sessions()


def get_session(session_id: str) -> Optional[Dict[str, Any]]:
    return _backend().get_session(session_id)


def save_session(session: Dict[str, Any]) -> None:
    _backend().save_session(session)


def delete_session(session_id: str) -> bool:
    return _backend().delete_session(session_id)


def check_connection() -> Dict[str, Any]:
    return _backend().check_connection()
