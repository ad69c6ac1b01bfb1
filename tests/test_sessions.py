import random

import pytest

from kart_manager.errors import EventValidationError
from kart_manager.sessions import create_session, reallocate_session, session_table


def test_create_session_allocates_unique_karts():
    session = create_session("Heat 1", "above", ["Ann", " Bo ", "Cy"], [5, 7, 12, 15], rng=random.Random(1))
    assert session["name"] == "Heat 1"
    assert session["category"] == "above"
    assert [d["name"] for d in session["drivers"]] == ["Ann", "Bo", "Cy"]
    karts = [d["kart_number"] for d in session["drivers"]]
    assert len(set(karts)) == 3
    assert set(karts) <= {5, 7, 12, 15}
    assert session["created_at"].endswith("Z")


def test_create_session_requires_name():
    with pytest.raises(EventValidationError):
        create_session("   ", "below", ["Ann"], [1])


def test_create_session_rejects_more_drivers_than_karts():
    with pytest.raises(EventValidationError):
        create_session("Heat", "below", ["Ann", "Bo"], [1])


def test_reallocate_keeps_roster_and_kart_pool():
    session = create_session("Heat", "below", ["Ann", "Bo", "Cy"], [1, 2, 3], rng=random.Random(3))
    updated = reallocate_session(session, rng=random.Random(4))
    assert updated["id"] == session["id"]
    assert [d["id"] for d in updated["drivers"]] == [d["id"] for d in session["drivers"]]
    assert sorted(d["kart_number"] for d in updated["drivers"]) == [1, 2, 3]
    # Original value untouched
    assert session is not updated
    assert session["drivers"] is not updated["drivers"]


def test_session_table_sorted_by_kart():
    session = {
        "drivers": [
            {"name": "A", "kart_number": 9},
            {"name": "B", "kart_number": None},
            {"name": "C", "kart_number": 2},
        ]
    }
    assert [d["name"] for d in session_table(session)] == ["C", "A", "B"]


def test_created_at_is_utc_timestamp():
    from datetime import datetime, timezone

    session = create_session("Heat", "below", ["Ann"], [1])
    stamp = datetime.strptime(session["created_at"], "%Y-%m-%dT%H:%M:%S.%fZ")
    assert abs((datetime.now(timezone.utc).replace(tzinfo=None) - stamp).total_seconds()) < 60


def test_non_string_session_name_is_coerced():
    session = create_session(7, "below", ["Ann"], [1])
    assert session["name"] == "7"
