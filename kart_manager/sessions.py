"""Named kart allocation sessions.

A session is a lighter record than an event: a roster with one randomly drawn
kart per driver, which can be re-drawn at any time.  Sessions are independent
of the active event and several can be kept side by side.
"""

from __future__ import annotations

import copy
import random
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .engine import CATEGORIES, allocate_karts
from .errors import EventValidationError


def create_session(
    name: str,
    category: str,
    driver_names: Iterable[str],
    kart_numbers: Iterable[int],
    rng: Optional[random.Random] = None,
) -> Dict[str, Any]:
    session_name = str(name or "").strip()
    if not session_name:
        raise EventValidationError("Please enter a session name.")
    if category not in CATEGORIES:
        raise EventValidationError(f"Unknown category '{category}'. Expected 'above' or 'below'.")
    names, karts, shuffled = allocate_karts(driver_names, kart_numbers, rng=rng)
    return {
        "id": uuid.uuid4().hex,
        "name": session_name,
        "category": category,
        "available_kart_numbers": karts,
        "drivers": [
            {"id": uuid.uuid4().hex, "name": driver_name, "kart_number": shuffled[idx]}
            for idx, driver_name in enumerate(names)
        ],
        "created_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
    }


def reallocate_session(session: Mapping[str, Any], rng: Optional[random.Random] = None) -> Dict[str, Any]:
    """Return a copy of ``session`` with a fresh random kart for every driver."""
    updated = copy.deepcopy(dict(session))
    drivers = updated.get("drivers") or []
    _, _, shuffled = allocate_karts(
        [d.get("name") for d in drivers],
        updated.get("available_kart_numbers") or [],
        rng=rng,
    )
    for idx, driver in enumerate(drivers):
        driver["kart_number"] = shuffled[idx]
    return updated


def session_table(session: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """Drivers sorted by kart number; drivers without a kart go last."""
    drivers = list(session.get("drivers") or [])

    def _key(d: Mapping[str, Any]):
        kart = d.get("kart_number")
        return (kart is None, kart or 0)

    return sorted(drivers, key=_key)


__all__ = ["create_session", "reallocate_session", "session_table"]
