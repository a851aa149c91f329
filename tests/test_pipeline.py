import httpx
import pytest

from ioda_client import IODAClient
from pipeline import IngestPipeline
from status import OutageScore

from payloads import BASE_URL, series_dict, signals_envelope


def make_pipeline(settings, store, handler) -> IngestPipeline:
    client = IODAClient(BASE_URL, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    return IngestPipeline(client, store, settings.sync, settings.regions)


def country_handler(failing=()):
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/outages/events"):
            if "events" in failing:
                return httpx.Response(502, request=request)
            data = [{"datasource": "bgp", "start": 1300, "duration": 600, "score": 300}]
            return httpx.Response(200, json={"data": data}, request=request)
        ds = request.url.params["datasource"]
        if ds in failing:
            return httpx.Response(200, text="<html>rate limited</html>", request=request)
        values = {"bgp": [10, 11, 12], "ping-slash24": [20, 21, 22], "merit-nt": [30, None, 32]}[ds]
        return httpx.Response(
            200, json=signals_envelope(series_dict(ds, values, start=1000)), request=request
        )

    return handler


@pytest.mark.asyncio
async def test_sync_window_persists_merged_rows_and_events(settings, store):
    pipeline = make_pipeline(settings, store, country_handler())
    result = await pipeline.sync_window("country", "VE", 1000, 2000)

    assert result.error is None
    assert result.signal_rows == 3
    assert result.event_rows == 1
    rows = store.load_signal_points("country", "VE", 0, 5000)
    assert [(r.bgp, r.probing, r.telescope) for r in rows] == [
        (10, 20, 30),
        (11, 21, None),
        (12, 22, 32),
    ]
    assert store.load_events("country", "VE", 0, 5000)[0].score == 300


@pytest.mark.asyncio
async def test_partial_failure_keeps_previous_values(settings, store):
    await make_pipeline(settings, store, country_handler()).sync_window("country", "VE", 1000, 2000)

    # probing now fails; bgp and telescope still succeed
    result = await make_pipeline(
        settings, store, country_handler(failing=("ping-slash24",))
    ).sync_window("country", "VE", 1000, 2000)

    assert result.error is None
    rows = store.load_signal_points("country", "VE", 0, 5000)
    assert [r.probing for r in rows] == [20, 21, 22]


@pytest.mark.asyncio
async def test_total_failure_reports_nothing_fetched(settings, store):
    failing = ("bgp", "ping-slash24", "merit-nt", "events")
    result = await make_pipeline(settings, store, country_handler(failing)).sync_latest(
        "country", "VE", now=10_000
    )
    assert not result.fetched_anything
    assert result.signal_rows == 0


@pytest.mark.asyncio
async def test_sync_regions_skips_failed_regions(settings, store):
    # Miranda was critical at the previous sync
    store.upsert_region_outages([OutageScore("4503", "Miranda", 250000)])

    def handler(request: httpx.Request) -> httpx.Response:
        code = request.url.path.rsplit("/", 1)[-1]
        if request.url.path.endswith("/outages/summary"):
            code = request.url.params["entityCode"]
            if code == "4503":
                return httpx.Response(500, request=request)
            score = {"4482": 700000, "4491": 9900}[code]
            return httpx.Response(
                200, json={"data": [{"scores": {"overall": score}}]}, request=request
            )
        ds = request.url.params["datasource"]
        if code == "4491":
            return httpx.Response(404, request=request)
        body = signals_envelope(series_dict(ds, [1, 2], entity_type="region", entity_code=code))
        return httpx.Response(200, json=body, request=request)

    pipeline = make_pipeline(settings, store, handler)
    summary = await pipeline.sync_regions(now=100_000)

    assert summary["ok"] is True
    assert summary["signalRows"] == 6
    assert summary["outageRows"] == 2
    assert summary["missingSignals"] == ["Lara"]
    assert summary["missingScores"] == ["Miranda"]

    regions, fetched_at = store.load_region_series("merit-nt")
    assert [(r.region_code, r.values) for r in regions] == [("4482", [1, 2]), ("4503", [1, 2])]
    assert fetched_at.timestamp() == 100_000

    scores, _ = store.load_region_outages()
    assert [(s.region_code, s.severity.value) for s in scores] == [
        ("4482", "critical"),
        ("4503", "critical"),
        ("4491", "degraded"),
    ]


@pytest.mark.asyncio
async def test_sync_regions_can_target_one_datasource(settings, store):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        ds = request.url.params["datasource"]
        return httpx.Response(200, json=signals_envelope(series_dict(ds, [3])), request=request)

    summary = await make_pipeline(settings, store, handler).sync_regions(
        now=100_000, datasources=["bgp"], scores=False
    )
    assert summary["signalRows"] == 3
    assert not any(p.endswith("/outages/summary") for p in seen)
    assert store.load_region_series("merit-nt")[0] == []


@pytest.mark.asyncio
async def test_fetch_entity_aligns_on_longest_series(settings, store):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/outages/events"):
            data = [{"datasource": "bgp", "start": 1300, "duration": 600, "score": 120}]
            return httpx.Response(200, json={"data": data}, request=request)
        assert "datasource" not in request.url.params
        body = signals_envelope(
            series_dict("bgp", [10, 11, 12, 13]),
            series_dict("ping-slash24", [50, 60], step=600),
        )
        return httpx.Response(200, json=body, request=request)

    points, events = await make_pipeline(settings, store, handler).fetch_entity(
        "country", "VE", 1000, 2200
    )
    assert [p.timestamp for p in points] == [1000, 1300, 1600, 1900]
    assert [p.probing for p in points] == [50, 60, 60, None]
    assert events[0].score == 120
    # live reads are not persisted
    assert store.load_signal_points("country", "VE", 0, 5000) == []
