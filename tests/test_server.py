from datetime import datetime, timezone
from types import SimpleNamespace

from fastapi.testclient import TestClient

from gmaps_crawler.models import DetailTask
from gmaps_crawler.server import create_app, run_server
from gmaps_crawler.storage.queue import MemoryWorkQueue
from gmaps_crawler.tracking.quota import QuotaTracker
from gmaps_crawler.tracking.stats import CrawlStats


def make_client() -> TestClient:
    stats = CrawlStats()
    stats.maps()
    stats.quota_rejected(3)
    quota = QuotaTracker(5, 5)
    quota.try_reserve_enqueue("lawyers")
    queue = MemoryWorkQueue()
    task = DetailTask(external_id="ChIJ1", query_term="lawyers", rank=1)
    queue.add(task, task.unique_key)
    crawler = SimpleNamespace(
        stats=stats,
        quota=quota,
        queue=queue,
        started_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        is_running=True,
    )
    return TestClient(create_app(crawler))


def test_health_reports_the_running_crawl() -> None:
    response = make_client().get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "running": True, "started_at": "2024-01-01T00:00:00+00:00"}


def test_stats_endpoint() -> None:
    data = make_client().get("/api/stats").json()

    assert data["maps"] == 1
    assert data["quota_rejected"] == 3
    assert data["ok"] == 0


def test_quota_endpoint() -> None:
    data = make_client().get("/api/quota").json()

    assert data["global_ceiling"] == 5
    assert data["global_enqueued"] == 1
    assert data["per_query_enqueued"] == {"lawyers": 1}


def test_queue_endpoint() -> None:
    assert make_client().get("/api/queue").json() == {"pending": 1, "handled": 0}


def test_decode_pb() -> None:
    response = make_client().post("/api/decode-pb", json={"pb": "!1m1!2sx!3e2"})

    assert response.status_code == 200
    data = response.json()
    assert data["encoded"] == "!1m1!2sx!3e2"
    assert data["fields"][1]["value"] == 2


def test_decode_pb_rejects_garbage() -> None:
    response = make_client().post("/api/decode-pb", json={"pb": "!1sok!garbage"})

    assert response.status_code == 400


def test_without_a_crawl_only_health_and_decoding_work() -> None:
    client = TestClient(create_app())

    assert client.get("/api/health").json()["running"] is False
    assert client.get("/api/stats").status_code == 503
    assert client.get("/api/queue").status_code == 503
    assert client.post("/api/decode-pb", json={"pb": "!1i5"}).json()["encoded"] == "!1i5"


def test_run_server_serves_the_standalone_app(monkeypatch) -> None:
    import uvicorn

    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda app, host, port: calls.append((app, host, port)))

    run_server(host="127.0.0.1", port=8123)

    [(app, host, port)] = calls
    assert (host, port) == ("127.0.0.1", 8123)
    assert TestClient(app).get("/api/health").json()["running"] is False
