import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from predictor.core import http as http_mod
from predictor.data.providers import thesportsdb
from predictor.data.providers.thesportsdb import ProviderError, RateLimiter


NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _event(event_id, home, away, ts, league="Spanish La Liga", **extra):
    out = {
        "idEvent": event_id,
        "strHomeTeam": home,
        "strAwayTeam": away,
        "strTimestamp": ts,
        "strLeague": league,
    }
    out.update(extra)
    return out


@pytest.fixture()
def provider(monkeypatch):
    """Route provider calls to a handler; no rate limiting, no backoff sleeps."""
    state = {"handler": None, "requests": []}

    def _dispatch(request):
        state["requests"].append(request)
        return state["handler"](request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(_dispatch), base_url="https://example.com/api/v1/json/123")

    async def _no_sleep(_delay):
        return None

    async def _request(client_, method, url, **kwargs):
        return await http_mod.request_with_retries(client_, method, url, _sleep=_no_sleep, **kwargs)

    monkeypatch.setattr(thesportsdb, "thesportsdb_client", lambda: client)
    monkeypatch.setattr(thesportsdb, "request_with_retries", _request)
    monkeypatch.setattr(thesportsdb, "_limiter", RateLimiter(0))
    return state


def test_search_fixtures_queries_both_orders_and_keeps_upcoming(provider):
    def handler(request):
        query = request.url.params["e"]
        if query == "Barcelona_vs_Real Madrid":
            return httpx.Response(
                200,
                json={
                    "event": [
                        _event("3", "Barcelona", "Real Madrid", "2025-04-20T19:00:00+00:00"),
                        _event("1", "Barcelona", "Real Madrid", "2024-10-26T19:00:00+00:00"),
                    ]
                },
            )
        return httpx.Response(
            200,
            json={
                "event": [
                    _event("2", "Real Madrid", "Barcelona", "2025-03-10T20:00:00"),
                    _event("3", "Barcelona", "Real Madrid", "2025-04-20T19:00:00+00:00"),
                ]
            },
        )

    provider["handler"] = handler
    fixtures = asyncio.run(thesportsdb.search_fixtures("Barcelona", "Real Madrid", now=NOW))

    assert [g.external_event_id for g in fixtures] == ["2", "3"]
    assert fixtures[0].id == "thesportsdb:2"
    assert fixtures[0].home_team == "Real Madrid"
    assert fixtures[0].league == "La Liga"
    assert fixtures[0].status == "upcoming"
    assert fixtures[0].kickoff == datetime(2025, 3, 10, 20, 0, tzinfo=timezone.utc)
    assert [r.url.params["e"] for r in provider["requests"]] == [
        "Barcelona_vs_Real Madrid",
        "Real Madrid_vs_Barcelona",
    ]


def test_search_fixtures_respects_limit(provider):
    events = [_event(str(i), "A", "B", f"2025-05-{i:02d}T18:00:00+00:00") for i in range(1, 8)]
    provider["handler"] = lambda request: httpx.Response(200, json={"event": events})

    fixtures = asyncio.run(thesportsdb.search_fixtures("A", "B", now=NOW, limit=3))
    assert [g.external_event_id for g in fixtures] == ["1", "2", "3"]


def test_search_fixtures_handles_null_event_list(provider):
    provider["handler"] = lambda request: httpx.Response(200, json={"event": None})
    assert asyncio.run(thesportsdb.search_fixtures("A", "B", now=NOW)) == []


def test_search_fixtures_requires_both_teams():
    with pytest.raises(ValueError):
        asyncio.run(thesportsdb.search_fixtures("Barcelona", "  ", now=NOW))


def test_lookup_event_finished(provider):
    def handler(request):
        assert request.url.path.endswith("/lookupevent.php")
        assert request.url.params["id"] == "1032723"
        return httpx.Response(
            200,
            json={
                "events": [
                    _event(
                        "1032723",
                        "Barcelona",
                        "Real Madrid",
                        "2025-01-15T20:00:00+00:00",
                        strStatus="Match Finished",
                        intHomeScore="2",
                        intAwayScore="1",
                    )
                ]
            },
        )

    provider["handler"] = handler
    result = asyncio.run(thesportsdb.lookup_event("1032723"))

    assert result.is_finished
    assert (result.home_score, result.away_score) == (2, 1)


def test_lookup_event_not_started(provider):
    provider["handler"] = lambda request: httpx.Response(
        200,
        json={"events": [_event("9", "A", "B", "2025-03-02T18:00:00+00:00", strStatus="Not Started", intHomeScore=None, intAwayScore=None)]},
    )
    result = asyncio.run(thesportsdb.lookup_event("9"))
    assert not result.is_finished
    assert result.home_score is None


def test_lookup_event_missing(provider):
    provider["handler"] = lambda request: httpx.Response(200, json={"events": None})
    assert asyncio.run(thesportsdb.lookup_event("404")) is None


def test_server_error_becomes_provider_error(provider):
    provider["handler"] = lambda request: httpx.Response(500)
    with pytest.raises(ProviderError) as exc:
        asyncio.run(thesportsdb.lookup_event("1"))
    assert exc.value.status_code == 500
    assert exc.value.endpoint == "/lookupevent.php"


def test_invalid_json_becomes_provider_error(provider):
    provider["handler"] = lambda request: httpx.Response(200, content=b"<html>")
    with pytest.raises(ProviderError):
        asyncio.run(thesportsdb.search_team("Barcelona"))


def test_search_team(provider):
    provider["handler"] = lambda request: httpx.Response(200, json={"teams": [{"idTeam": 133739, "strTeam": "Barcelona"}]})
    team = asyncio.run(thesportsdb.search_team("barcelona"))
    assert team.id == "133739"
    assert team.name == "Barcelona"


def test_normalize_league():
    assert thesportsdb.normalize_league("English Premier League") == "Premier League"
    assert thesportsdb.normalize_league("UEFA Champions League") == "Champions League"
    assert thesportsdb.normalize_league("Argentinian Primera Division") == "Argentinian Primera Division"
    assert thesportsdb.normalize_league("") is None


def test_rate_limiter_spaces_calls():
    clock = {"now": 100.0}
    sleeps = []

    async def _sleep(delay):
        sleeps.append(delay)
        clock["now"] += delay

    limiter = RateLimiter(2100, clock=lambda: clock["now"], sleep=_sleep)

    async def _run():
        await limiter.wait()
        clock["now"] += 0.6
        await limiter.wait()
        clock["now"] += 5.0
        await limiter.wait()

    asyncio.run(_run())
    assert sleeps == [pytest.approx(1.5)]


@pytest.mark.parametrize(
    "status, finished",
    [
        ("Match Finished", True),
        ("FT", True),
        ("Full Time", True),
        ("Finished AET", True),
        ("Match Finished After Penalties", True),
        ("Not Started", False),
        ("Not Finished", False),
        ("2H", False),
        (None, False),
    ],
)
def test_is_finished_status(status, finished):
    assert thesportsdb.is_finished_status(status) is finished


def test_lookup_event_accepts_free_text_finished_status(provider):
    provider["handler"] = lambda request: httpx.Response(
        200,
        json={"events": [_event("7", "A", "B", "2025-02-01T18:00:00+00:00", strStatus="Finished AET", intHomeScore="1", intAwayScore="1")]},
    )
    result = asyncio.run(thesportsdb.lookup_event("7"))
    assert result.is_finished
    assert (result.home_score, result.away_score) == (1, 1)


def test_rate_limiter_applies_to_retried_attempts(provider, monkeypatch):
    class _CountingLimiter:
        def __init__(self):
            self.calls = 0

        async def wait(self):
            self.calls += 1

    limiter = _CountingLimiter()
    monkeypatch.setattr(thesportsdb, "_limiter", limiter)
    responses = iter([httpx.Response(503), httpx.Response(500), httpx.Response(200, json={"teams": None})])
    provider["handler"] = lambda request: next(responses)

    assert asyncio.run(thesportsdb.search_team("Nobody FC")) is None
    assert len(provider["requests"]) == 3
    assert limiter.calls == 3
