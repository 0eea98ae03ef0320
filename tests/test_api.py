"""HTTP-level tests: routing, status codes and error mapping.

The FastAPI app is driven in-process through httpx's ASGI transport with the
engine dependency pointed at the per-test in-memory database and fakeredis.
"""
import asyncio

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from affinity_engine.api.dependencies import get_engine
from affinity_engine.main import _RequestTracker, app

API = "/api/v1"


@pytest_asyncio.fixture
async def client(engine_facade):
    app.dependency_overrides[get_engine] = lambda: engine_facade
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _submit(client, person_id, answers):
    payload = {"responses": [{"item_id": i, "result": r} for i, r in answers]}
    resp = await client.post(f"{API}/affinity/persons/{person_id}/survey", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.mark.asyncio
class TestHealth:
    async def test_liveness(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy"}


@pytest.mark.asyncio
class TestRequestDrain:
    async def test_waits_for_in_flight_requests(self):
        tracker = _RequestTracker()
        tracker.started()
        waiter = asyncio.create_task(tracker.wait_idle(5))
        await asyncio.sleep(0)
        assert not waiter.done()

        tracker.finished()
        await waiter
        assert tracker.active == 0

    async def test_gives_up_after_timeout(self):
        tracker = _RequestTracker()
        tracker.started()
        await tracker.wait_idle(0.01)
        assert tracker.active == 1


@pytest.mark.asyncio
class TestProfileEndpoints:
    async def test_submit_survey(self, client, answers):
        body = await _submit(client, 1, answers(o=5, c=1, e=3))
        assert body["status"] == "complete"
        assert body["scores"]["o"] == 1.0
        assert body["stored_responses"] == 3

        resp = await client.get(f"{API}/affinity/persons/1/profile")
        assert resp.status_code == 200
        assert resp.json()["version"] == 1

    async def test_invalid_result_is_422_with_field(self, client):
        resp = await client.post(
            f"{API}/affinity/persons/1/survey",
            json={"responses": [{"item_id": 4, "result": 5}, {"item_id": 2, "result": 9}]},
        )
        assert resp.status_code == 422
        assert resp.json()["field"] == "responses[item_id=2].result"

    async def test_unknown_person_is_404(self, client, answers):
        resp = await client.post(
            f"{API}/affinity/persons/99/survey",
            json={"responses": [{"item_id": i, "result": r} for i, r in answers(o=5)]},
        )
        assert resp.status_code == 404
        assert resp.json()["entity"] == "Person"

    async def test_profile_without_answers(self, client):
        resp = await client.get(f"{API}/affinity/persons/2/profile")
        assert resp.status_code == 200
        assert resp.json()["status"] == "incomplete"


@pytest.mark.asyncio
class TestAffinityEndpoints:
    async def test_incomplete_profile_is_not_an_error(self, client):
        resp = await client.get(f"{API}/affinity/persons/1/practices/3")
        assert resp.status_code == 200
        assert resp.json()["availability"] == "profile_incomplete"

    async def test_person_affinity(self, client, answers):
        await _submit(client, 1, answers(o=5, c=1, e=3))
        resp = await client.get(f"{API}/affinity/persons/1/practices/3")
        assert resp.json() == {
            "person_id": 1,
            "practice_version_id": 3,
            "affinity": 100,
            "availability": "available",
        }

    async def test_person_affinity_list(self, client, answers):
        await _submit(client, 1, answers(o=5, c=1, e=3))

        resp = await client.get(f"{API}/affinity/persons/1/practices")
        assert resp.status_code == 200
        assert [(r["practice_version_id"], r["affinity"]) for r in resp.json()] == [
            (1, 33), (2, 17), (3, 100), (4, 0), (6, 100),
        ]

        missing = await client.get(f"{API}/affinity/persons/99/practices")
        assert missing.status_code == 404

    async def test_team_affinity(self, client, answers):
        await _submit(client, 1, answers(o=5, c=1, e=3))
        await _submit(client, 2, answers(o=1, c=5, e=5, a=5))

        resp = await client.get(
            f"{API}/affinity/practices/3/team", params={"member_ids": "2,1,3"}
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["average"] == 75.0
        assert body["member_count"] == 2
        assert body["team_size"] == 3

    async def test_malformed_member_ids(self, client):
        resp = await client.get(
            f"{API}/affinity/practices/3/team", params={"member_ids": "1,abc"}
        )
        assert resp.status_code == 422
        assert resp.json()["field"] == "member_ids"

    async def test_recalculate_team(self, client, answers):
        await _submit(client, 1, answers(o=5))
        resp = await client.post(f"{API}/affinity/teams/1/recalculate")
        assert resp.status_code == 200
        assert resp.json()["successful"] == 1

    async def test_recalculate_unknown_practice(self, client):
        resp = await client.post(f"{API}/affinity/practices/999/recalculate")
        assert resp.status_code == 404


@pytest.mark.asyncio
class TestRecommendationEndpoints:
    async def test_ranked_recommendations(self, client, answers):
        await _submit(client, 1, answers(o=5, c=1, e=3))
        await _submit(client, 2, answers(o=1, c=5, e=5, a=5))

        resp = await client.get(
            f"{API}/recommendations", params={"member_ids": "1,2", "threshold": 60}
        )
        assert resp.status_code == 200
        body = resp.json()
        assert [r["practice"]["id"] for r in body] == [3, 1, 2, 4, 5]
        assert [r["recommended"] for r in body] == [True, True, False, False, False]

    async def test_threshold_out_of_range(self, client):
        resp = await client.get(
            f"{API}/recommendations", params={"member_ids": "1", "threshold": 150}
        )
        assert resp.status_code == 422

    async def test_alternatives_unknown_practice(self, client):
        resp = await client.get(
            f"{API}/recommendations/alternatives/999", params={"member_ids": "1"}
        )
        assert resp.status_code == 404

    async def test_comprehensive_report(self, client, answers):
        await _submit(client, 1, answers(o=5, c=1, e=3))
        resp = await client.get(
            f"{API}/recommendations/comprehensive",
            params={"member_ids": "1", "threshold": 60, "include_alternatives": "false"},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["alternatives"] == []
        assert body["summary"]["total_practices"] == 5

    async def test_flag_and_list(self, client, answers):
        await _submit(client, 1, answers(o=5, c=1, e=3))
        resp = await client.post(
            f"{API}/recommendations/flag-difficulty",
            json={"person_id": 1, "practice_version_id": 4, "reason": "too rigid"},
        )
        assert resp.status_code == 201
        assert resp.json()["reason"] == "too rigid"

        resp = await client.get(f"{API}/recommendations/flagged", params={"member_ids": "1"})
        assert [f["practice"]["id"] for f in resp.json()] == [4]

    async def test_flag_unknown_person(self, client):
        resp = await client.post(
            f"{API}/recommendations/flag-difficulty",
            json={"person_id": 99, "practice_version_id": 4},
        )
        assert resp.status_code == 404

    async def test_dashboard_unknown_team(self, client):
        resp = await client.get(f"{API}/recommendations/teams/42/dashboard")
        assert resp.status_code == 404
        assert resp.json()["entity"] == "Team"

    async def test_dashboard(self, client, answers):
        await _submit(client, 1, answers(o=5, c=1, e=3))
        resp = await client.get(
            f"{API}/recommendations/teams/1/dashboard", params={"threshold": 60}
        )
        assert resp.status_code == 200
        assert resp.json()["report"]["member_ids"] == [1, 2, 3]
