import datetime as dt

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from models import SignalRecord
from reconcile import reconcile, reconcile_values
from series import OutageEvent, RegionSeries, SignalPoint
from status import OutageScore

T0 = dt.datetime(2026, 3, 1, tzinfo=dt.timezone.utc)


def _count_signals(store) -> int:
    with Session(store.engine) as session:
        return session.execute(select(func.count()).select_from(SignalRecord)).scalar_one()


def test_reconcile_prefers_fresh_then_previous():
    fresh = [SignalPoint(100, bgp=5.0), SignalPoint(200, probing=7.0)]
    previous = [SignalPoint(100, bgp=1.0, probing=2.0, telescope=3.0), SignalPoint(300, bgp=9.0)]
    out = reconcile(fresh, previous)
    assert out == [
        SignalPoint(100, bgp=5.0, probing=2.0, telescope=3.0),
        SignalPoint(200, probing=7.0),
    ]


def test_reconcile_values_keeps_stored_array_on_empty_fetch():
    assert reconcile_values([], [1.0, None]) == [1.0, None]
    assert reconcile_values([2.0], [1.0]) == [2.0]
    assert reconcile_values([], None) == []


def test_signal_upsert_is_idempotent(store):
    points = [SignalPoint(1000 + 300 * i, bgp=float(i), probing=1.0) for i in range(5)]
    store.upsert_signal_points("country", "VE", points, now=T0)
    first = store.load_signal_points("country", "VE", 0, 10_000)
    store.upsert_signal_points("country", "VE", points, now=T0)
    second = store.load_signal_points("country", "VE", 0, 10_000)

    assert first == second == points
    assert _count_signals(store) == 5


def test_failed_datasource_does_not_erase_stored_values(store):
    store.upsert_signal_points(
        "country",
        "VE",
        [SignalPoint(1000, bgp=10.0, probing=20.0, telescope=30.0)],
        now=T0,
    )
    # next cycle: probing and telescope fetches came back empty
    store.upsert_signal_points("country", "VE", [SignalPoint(1000, bgp=11.0)], now=T0)

    (row,) = store.load_signal_points("country", "VE", 0, 2000)
    assert row == SignalPoint(1000, bgp=11.0, probing=20.0, telescope=30.0)


def test_entities_are_isolated_and_reads_are_windowed(store):
    store.upsert_signal_points("country", "VE", [SignalPoint(1000, bgp=1.0)], now=T0)
    store.upsert_signal_points("region", "4482", [SignalPoint(1000, bgp=2.0)], now=T0)
    store.upsert_signal_points("country", "VE", [SignalPoint(5000, bgp=3.0)], now=T0)

    assert [p.bgp for p in store.load_signal_points("country", "VE", 0, 2000)] == [1.0]
    assert [p.bgp for p in store.load_signal_points("region", "4482", 0, 9000)] == [2.0]


def test_latest_signal_update(store):
    assert store.latest_signal_update("country", "VE") is None
    later = T0 + dt.timedelta(hours=3)
    store.upsert_signal_points("country", "VE", [SignalPoint(1000, bgp=1.0)], now=T0)
    store.upsert_signal_points("country", "VE", [SignalPoint(2000, bgp=1.0)], now=later)
    assert store.latest_signal_update("country", "VE") == later


def test_event_upsert_is_idempotent_and_newest_first(store):
    events = [
        OutageEvent("country", "VE", "bgp", 100, 600, 120.0),
        OutageEvent("country", "VE", "bgp", 900, 300, 800.0),
    ]
    store.upsert_events(events, now=T0)
    store.upsert_events(events, now=T0)
    loaded = store.load_events("country", "VE", 0, 1000)
    assert [e.start_epoch for e in loaded] == [900, 100]

    # same key, new score: overwritten in place
    store.upsert_events([OutageEvent("country", "VE", "bgp", 100, 600, 50.0)], now=T0)
    loaded = store.load_events("country", "VE", 0, 1000)
    assert len(loaded) == 2
    assert loaded[1].score == 50.0


def test_region_series_keeps_previous_row_on_empty_fetch(store):
    store.upsert_region_series(
        [RegionSeries("4482", "Falcón", "bgp", 1000, 300, [5.0, 6.0])], now=T0
    )
    later = T0 + dt.timedelta(days=1)
    written = store.upsert_region_series(
        [
            RegionSeries("4482", "Falcón", "bgp", 9999, 300, []),
            RegionSeries("4491", "Lara", "bgp", 9999, 300, []),
        ],
        now=later,
    )

    assert written == 0
    regions, fetched_at = store.load_region_series("bgp")
    assert [r.region_code for r in regions] == ["4482"]
    assert regions[0].values == [5.0, 6.0]
    assert regions[0].from_epoch == 1000
    # nothing new arrived, so the cursor does not move
    assert fetched_at == T0


def test_region_outages_overwrite_and_sort(store):
    store.upsert_region_outages(
        [OutageScore("4482", "Falcón", 700000), OutageScore("4491", "Lara", 100)], now=T0
    )
    store.upsert_region_outages([OutageScore("4491", "Lara", 180000)], now=T0)

    scores, _ = store.load_region_outages()
    assert [(s.region_code, s.score) for s in scores] == [("4482", 700000), ("4491", 180000)]
    assert scores[1].severity.value == "high"
