from __future__ import annotations

from datetime import UTC, datetime, timedelta

from fastapi.testclient import TestClient

from opstrail.models.events import EventRecord


def _seed_trail(client: TestClient, *, correlation_id: str, count: int = 3, base: datetime | None = None) -> list[int]:
    store = client.app.state.event_store
    base_ts = base or datetime.now(UTC) - timedelta(minutes=5)
    ids = []
    for idx in range(count):
        event = store.append(
            EventRecord(
                event_type="cache.read" if idx % 2 == 0 else "task.perform",
                name=f"{correlation_id}-step-{idx}",
                correlation_id=correlation_id,
                tenant_id="acme",
                duration_ms=float(idx + 1),
                occurred_at=base_ts + timedelta(seconds=idx),
                metadata={"idx": idx},
            )
        )
        ids.append(event.id)
    return ids


def test_list_events_filters_and_orders(client: TestClient) -> None:
    _seed_trail(client, correlation_id="corr-a")
    _seed_trail(client, correlation_id="corr-b")

    resp = client.get("/ops/events", params={"correlation_id": "corr-a"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["count"] == 3
    assert body["limit"] == 200
    assert body["filters"] == {"correlation_id": "corr-a"}
    assert [event["name"] for event in body["events"]] == [
        "corr-a-step-2",
        "corr-a-step-1",
        "corr-a-step-0",
    ]


def test_list_events_text_and_type_filters(client: TestClient) -> None:
    _seed_trail(client, correlation_id="corr-a")
    _seed_trail(client, correlation_id="corr-b")

    resp = client.get("/ops/events", params={"event_type": "task.perform", "q": "corr-b"})
    assert resp.status_code == 200
    assert [event["name"] for event in resp.json()["events"]] == ["corr-b-step-1"]


def test_list_events_time_range(client: TestClient) -> None:
    base = datetime(2026, 1, 1, tzinfo=UTC)
    _seed_trail(client, correlation_id="corr-t", base=base)

    resp = client.get(
        "/ops/events",
        params={"since": (base + timedelta(seconds=1)).isoformat(), "until": (base + timedelta(seconds=1)).isoformat()},
    )
    assert resp.status_code == 200
    assert [event["name"] for event in resp.json()["events"]] == ["corr-t-step-1"]


def test_list_events_clamps_limit(client: TestClient) -> None:
    _seed_trail(client, correlation_id="corr-a", count=5)

    assert client.get("/ops/events", params={"limit": 2}).json()["count"] == 2
    assert client.get("/ops/events", params={"limit": 5000}).json()["limit"] == 1000
    assert client.get("/ops/events", params={"limit": 0}).json()["limit"] == 200


def test_show_event_includes_related_chronologically(client: TestClient) -> None:
    ids = _seed_trail(client, correlation_id="corr-show")
    _seed_trail(client, correlation_id="corr-other")

    resp = client.get(f"/ops/events/{ids[1]}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["event"]["id"] == ids[1]
    assert body["event"]["metadata"] == {"idx": 1}
    assert [event["id"] for event in body["related"]] == ids


def test_show_event_not_found(client: TestClient) -> None:
    resp = client.get("/ops/events/999999")
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "EVENT_NOT_FOUND"


def test_event_stats(client: TestClient) -> None:
    _seed_trail(client, correlation_id="corr-a", count=4)

    resp = client.get("/ops/events/stats", params={"window": "1h"})
    assert resp.status_code == 200
    stats = {row["key"]: row for row in resp.json()["stats"]}
    assert stats["cache.read"]["count"] == 2
    assert stats["task.perform"]["max_duration_ms"] == 4.0

    by_name = client.get("/ops/events/stats", params={"group_by": "name", "event_type": "cache.read"}).json()
    assert by_name["group_by"] == "name"
    assert {row["key"] for row in by_name["stats"]} == {"corr-a-step-0", "corr-a-step-2"}


def test_purge_with_explicit_cutoff(client: TestClient) -> None:
    old = datetime(2025, 1, 1, tzinfo=UTC)
    _seed_trail(client, correlation_id="corr-old", base=old)
    _seed_trail(client, correlation_id="corr-new")

    resp = client.post("/ops/events/purge", params={"before": datetime(2025, 6, 1, tzinfo=UTC).isoformat()})
    assert resp.status_code == 200
    assert resp.json()["deleted"] == 3
    assert client.get("/ops/events").json()["count"] == 3


def test_purge_uses_retention_period(client: TestClient) -> None:
    _seed_trail(client, correlation_id="corr-ancient", base=datetime.now(UTC) - timedelta(days=30))
    _seed_trail(client, correlation_id="corr-fresh")

    resp = client.post("/ops/events/purge")
    assert resp.status_code == 200
    assert resp.json()["deleted"] == 3


def test_purge_without_retention_conflicts(client: TestClient) -> None:
    client.app.state.runtime.config.retention_period = None
    resp = client.post("/ops/events/purge")
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "RETENTION_DISABLED"


def test_delete_event_and_clear(client: TestClient) -> None:
    ids = _seed_trail(client, correlation_id="corr-del")

    assert client.delete(f"/ops/events/{ids[0]}").status_code == 200
    assert client.delete(f"/ops/events/{ids[0]}").status_code == 404

    resp = client.delete("/ops/events")
    assert resp.status_code == 200
    assert resp.json()["deleted"] == 2


def test_auth_check_denies_access(client: TestClient) -> None:
    _seed_trail(client, correlation_id="corr-auth")
    client.app.state.runtime.config.auth_check = lambda request: request.headers.get("X-Ops-Token") == "letmein"

    resp = client.get("/ops/events")
    assert resp.status_code == 401
    assert resp.json()["detail"]["code"] == "UNAUTHORIZED"

    resp = client.get("/ops/events", headers={"X-Ops-Token": "letmein"})
    assert resp.status_code == 200
    assert resp.json()["count"] == 3


def test_auth_check_errors_deny_access(client: TestClient) -> None:
    def broken(request) -> bool:  # noqa: ANN001
        raise RuntimeError("auth backend down")

    client.app.state.runtime.config.auth_check = broken
    assert client.get("/ops/dashboard").status_code == 401
    assert client.get("/ops/health").status_code == 200
