"""Event state engine: kart allocation, round scoring and grid ordering.

All functions are pure.  They take an event document (a JSON-compatible dict)
and return a new document; the input is never mutated so callers can keep the
last-known-good state if persisting the new one fails.
"""

from __future__ import annotations

import copy
import random
import re
import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .errors import EventValidationError, RoundClosedError

CATEGORIES = ("above", "below")
ROUNDS = ("setup", "qualification", "race1", "race2", "race3", "final")
SCORED_ROUNDS = ("qualification", "race1", "race2", "race3")

DEFAULT_EVENT_NAME = "Spark Racing Event"

QUAL_POINTS = [10, 9, 8, 7, 6, 5, 4, 3, 2, 1]
RACE_POINTS = [10, 7, 6, 5, 4, 3, 2, 1]  # race1 and race2
RACE3_POINTS = [15, 13, 10, 8, 6, 4, 2, 1]

_POINTS_TABLES: Dict[str, List[int]] = {
    "qualification": QUAL_POINTS,
    "race1": RACE_POINTS,
    "race2": RACE_POINTS,
    "race3": RACE3_POINTS,
}

_ROUND_TITLES = {
    "setup": "Setup",
    "qualification": "Qualification",
    "race1": "Race 1",
    "race2": "Race 2",
    "race3": "Race 3",
    "final": "Final Results",
}

_SEPARATORS = re.compile(r"[,\s]+")
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")

POSITIONS_INCOMPLETE = (
    "Please enter a unique finishing position (1 to number of drivers) for every driver."
)
POSITIONS_DUPLICATED = "Each finishing position must be used exactly once."


def _leading_int(token: str) -> Optional[int]:
    match = _LEADING_INT.match(token)
    if not match:
        return None
    return int(match.group(1))


def parse_kart_numbers(text: Optional[str]) -> List[int]:
    """Parse a free-form list such as ``"1, 2,2 3"`` into sorted unique karts.

    Tokens that are not integers or are not positive are dropped.
    """
    numbers = set()
    for token in _SEPARATORS.split(text or ""):
        if not token:
            continue
        value = _leading_int(token)
        if value is not None and value > 0:
            numbers.add(value)
    return sorted(numbers)


def parse_position(value: Any) -> Optional[int]:
    """Parse a position entered for one driver; blank or junk becomes None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    return _leading_int(str(value))


def points_for_round(round_name: str, position_index: int) -> int:
    """Return points for a 0-based finishing index; beyond the table scores 0."""
    table = _POINTS_TABLES[round_name]
    if 0 <= position_index < len(table):
        return table[position_index]
    return 0


def next_round(round_name: str) -> str:
    if round_name == "final":
        return "final"
    return ROUNDS[ROUNDS.index(round_name) + 1]


def next_kart_number(kart_numbers: List[int], current: Optional[int]) -> Optional[int]:
    """Cyclic successor of ``current`` in the ascending kart list.

    A kart outside the list moves to the first kart.  ``None`` and an empty
    list leave the value untouched.
    """
    if not kart_numbers or current is None:
        return current
    try:
        idx = kart_numbers.index(current)
    except ValueError:
        return kart_numbers[0]
    return kart_numbers[(idx + 1) % len(kart_numbers)]


def round_title(round_name: str) -> str:
    return _ROUND_TITLES.get(round_name, "Setup")


def category_label(category: str) -> str:
    return "Above 70kg" if category == "above" else "Below 70kg"


def round_result(driver: Mapping[str, Any], round_name: str) -> Optional[Dict[str, Any]]:
    return (driver.get("results") or {}).get(round_name)


def _total_points(results: Mapping[str, Any]) -> int:
    return sum(int((results.get(r) or {}).get("points", 0)) for r in SCORED_ROUNDS)


def _clean_driver_names(driver_names: Iterable[str]) -> List[str]:
    names: List[str] = []
    for raw in driver_names or []:
        name = str(raw or "").strip()
        if not name:
            raise EventValidationError("Driver names cannot be blank.")
        if name in names:
            raise EventValidationError(f"Driver '{name}' has already been added.")
        names.append(name)
    return names


def allocate_karts(
    driver_names: Iterable[str],
    kart_numbers: Iterable[int],
    rng: Optional[random.Random] = None,
) -> tuple[List[str], List[int], List[int]]:
    """Validate a roster against a kart list and draw a random allocation.

    Returns ``(names, karts, shuffled)`` where ``karts`` is the normalised
    ascending kart list and ``shuffled[i]`` is the kart for ``names[i]``.
    """
    names = _clean_driver_names(driver_names)
    karts = sorted({int(k) for k in (kart_numbers or []) if int(k) > 0})
    if not karts:
        raise EventValidationError("Please enter at least one valid kart number.")
    if not names:
        raise EventValidationError("Please add at least one driver.")
    if len(names) > len(karts):
        raise EventValidationError(
            f"Number of drivers ({len(names)}) cannot exceed number of karts ({len(karts)}). "
            "Please add more kart numbers or remove some drivers."
        )
    shuffled = list(karts)
    (rng or random).shuffle(shuffled)
    return names, karts, shuffled


def setup_event(
    category: str,
    driver_names: Iterable[str],
    kart_numbers: Iterable[int],
    name: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> Dict[str, Any]:
    """Create a new event in the qualification round with random kart allocation.

    Args:
        category: ``"above"`` or ``"below"``.
        driver_names: Names in registration order.
        kart_numbers: Available kart numbers; normalised to a sorted unique list.
        name: Optional display name for the event.
        rng: Random source for the allocation; module ``random`` when omitted.

    Raises:
        EventValidationError: on an unknown category, blank or duplicate names,
            no karts, no drivers, or more drivers than karts.
    """
    if category not in CATEGORIES:
        raise EventValidationError(f"Unknown category '{category}'. Expected 'above' or 'below'.")
    names, karts, shuffled = allocate_karts(driver_names, kart_numbers, rng=rng)
    drivers = [
        {
            "id": uuid.uuid4().hex,
            "name": driver_name,
            "category": category,
            "current_kart_number": shuffled[idx],
            "results": {},
            "total_points": 0,
        }
        for idx, driver_name in enumerate(names)
    ]
    return {
        "name": str(name or "").strip() or DEFAULT_EVENT_NAME,
        "category": category,
        "available_kart_numbers": karts,
        "drivers": drivers,
        "current_round": "qualification",
    }


def _validated_positions(drivers: List[Dict[str, Any]], positions: Mapping[str, Any]) -> Dict[str, int]:
    count = len(drivers)
    out: Dict[str, int] = {}
    for driver in drivers:
        pos = parse_position(positions.get(driver["id"]))
        if pos is None or pos < 1 or pos > count:
            raise EventValidationError(POSITIONS_INCOMPLETE)
        out[driver["id"]] = pos
    if len(set(out.values())) != count:
        raise EventValidationError(POSITIONS_DUPLICATED)
    return out


def record_round_results(state: Optional[Mapping[str, Any]], positions: Mapping[str, Any]) -> Dict[str, Any]:
    """Score the current round, advance to the next one and rotate karts.

    ``positions`` maps driver id to finishing position.  Ids that do not belong
    to the event are ignored.  The returned state is a new document; on any
    error the input is left as it was.
    """
    if not state:
        raise RoundClosedError("No active event. Set up an event first.")
    round_name = state.get("current_round")
    if round_name not in SCORED_ROUNDS:
        raise RoundClosedError(f"Results cannot be recorded during '{round_title(round_name)}'.")

    new_state = copy.deepcopy(dict(state))
    drivers = new_state.get("drivers") or []
    by_driver = _validated_positions(drivers, positions or {})

    for driver in drivers:
        pos = by_driver[driver["id"]]
        results = driver.setdefault("results", {})
        results[round_name] = {
            "position": pos,
            "points": points_for_round(round_name, pos - 1),
            "kart_number": driver.get("current_kart_number"),
        }
        driver["total_points"] = _total_points(results)

    upcoming = next_round(round_name)
    if upcoming != "final":
        karts = new_state.get("available_kart_numbers") or []
        for driver in drivers:
            driver["current_kart_number"] = next_kart_number(karts, driver.get("current_kart_number"))
    new_state["current_round"] = upcoming
    return new_state


def grid_sort_key(driver: Mapping[str, Any], state: Mapping[str, Any]) -> float:
    """Sort key placing ``driver`` on the grid for the state's current round."""
    total = len(state.get("drivers") or [])
    current = state.get("current_round")

    if current == "qualification":
        kart = driver.get("current_kart_number")
        return kart if kart is not None else float("inf")
    if current in ("race1", "race2"):
        # Reverse of the previous round: slowest starts at the front
        previous = "qualification" if current == "race1" else "race1"
        pos = (round_result(driver, previous) or {}).get("position")
        if not pos:
            return total + 1
        return total - pos + 1
    if current == "race3":
        pos = (round_result(driver, "race2") or {}).get("position")
        if not pos:
            return total + 1
        return pos
    return float("inf")


def grid_order(state: Mapping[str, Any]) -> List[Dict[str, Any]]:
    drivers = list(state.get("drivers") or [])
    return sorted(drivers, key=lambda d: grid_sort_key(d, state))


def final_standings(state: Optional[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Rank drivers by total points once the final round is reached.

    Equal totals keep registration order.
    """
    if not state or state.get("current_round") != "final":
        raise RoundClosedError("Final standings are available once Race 3 results are saved.")
    drivers = list(state.get("drivers") or [])
    drivers.sort(key=lambda d: -int(d.get("total_points", 0)))
    standings: List[Dict[str, Any]] = []
    for rank, driver in enumerate(drivers, start=1):
        entry: Dict[str, Any] = {
            "rank": rank,
            "driver_id": driver.get("id"),
            "name": driver.get("name"),
            "kart_number": driver.get("current_kart_number"),
            "total_points": int(driver.get("total_points", 0)),
        }
        for r in SCORED_ROUNDS:
            entry[f"{r}_points"] = int((round_result(driver, r) or {}).get("points", 0))
        standings.append(entry)
    return standings


def reset_event(state: Optional[Mapping[str, Any]] = None) -> None:
    """Discard the event regardless of its round; callers delete the stored copy."""
    return None


__all__ = [
    "CATEGORIES",
    "ROUNDS",
    "SCORED_ROUNDS",
    "parse_kart_numbers",
    "parse_position",
    "points_for_round",
    "next_round",
    "next_kart_number",
    "round_title",
    "category_label",
    "round_result",
    "allocate_karts",
    "setup_event",
    "record_round_results",
    "grid_sort_key",
    "grid_order",
    "final_standings",
    "reset_event",
]
