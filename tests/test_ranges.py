from datetime import datetime, timezone

from meetings_worker.services.normalize import Meeting
from meetings_worker.services.observer import CountingObserver
from meetings_worker.services.ranges import compute_window, filter_by_date_range, group_by_source


def _m(ident, start, source="s"):
    return Meeting(id=ident, title="t", start=start, source=source)


def test_range_bounds_are_inclusive():
    lo = _m("lo", "2024-01-01T00:00:00Z")
    mid = _m("mid", "2024-01-15T12:00:00Z")
    hi = _m("hi", "2024-01-31T23:59:59Z")
    out = _m("out", "2024-02-01T00:00:00Z")
    kept = filter_by_date_range([lo, mid, hi, out], "2024-01-01T00:00:00Z", "2024-01-31T23:59:59Z")
    assert [m.id for m in kept] == ["lo", "mid", "hi"]


def test_unparseable_start_is_excluded_and_reported():
    obs = CountingObserver()
    kept = filter_by_date_range(
        [_m("bad", "next week"), _m("ok", "2024-01-02")], "2024-01-01", "2024-01-03", observer=obs
    )
    assert [m.id for m in kept] == ["ok"]
    assert obs.events["unparseable_start"] == 1
    assert obs.last["unparseable_start"] == {"id": "bad", "start": "next week"}


def test_invalid_bounds_yield_nothing():
    obs = CountingObserver()
    assert filter_by_date_range([_m("a", "2024-01-01")], "garbage", "2024-12-31", observer=obs) == []
    assert obs.events["invalid_range"] == 1


def test_group_by_source_is_complete():
    items = [
        _m("1", "2024-01-01", "fathom"),
        _m("2", "2024-01-02", "manual"),
        _m("3", "2024-01-03", "fathom"),
        _m("4", "2024-01-04", ""),
    ]
    groups = group_by_source(items)
    assert set(groups) == {"fathom", "manual", "unknown"}
    assert [m.id for m in groups["fathom"]] == ["1", "3"]
    assert sum(len(v) for v in groups.values()) == len(items)


def test_group_by_source_on_mappings():
    groups = group_by_source([{"id": "1"}, {"id": "2", "source": "webhook"}])
    assert [g["id"] for g in groups["unknown"]] == ["1"]
    assert [g["id"] for g in groups["webhook"]] == ["2"]


def test_compute_window_spans_whole_local_days():
    now = datetime(2024, 7, 10, 15, 30, tzinfo=timezone.utc)
    window = compute_window("America/Chicago", 180, now=now)
    assert window.to_iso == "2024-07-10T23:59:59.999-05:00"
    assert window.from_iso == "2024-01-13T00:00:00.000-06:00"
    assert window.as_params()["tz"] == "America/Chicago"


def test_compute_window_single_day():
    now = datetime(2024, 7, 10, 3, 0, tzinfo=timezone.utc)  # still July 9th in Chicago
    window = compute_window("America/Chicago", 1, now=now)
    assert window.from_iso.startswith("2024-07-09T00:00:00")
    assert window.to_iso.startswith("2024-07-09T23:59:59")
