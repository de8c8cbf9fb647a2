import asyncio

from fastapi.testclient import TestClient

from conftest import PROJECT_ID, seed_forum_user
from signal_engine.main import app
from signal_engine.services.scheduler import SchedulerService, collect_payloads


def test_collect_payloads_lists_linked_users(database):
    async def scenario():
        async with database() as factory:
            await seed_forum_user(factory)
            await seed_forum_user(factory, user_id="u-nobody", forum_username=None)
            async with factory() as session:
                return await collect_payloads(session)

    assert asyncio.run(scenario()) == [{
        "platform": "discourse",
        "user_id": "u-alice",
        "project_id": PROJECT_ID,
        "signal_strength_name": "discourse_forum",
    }]


def test_daily_sweep_enqueues_one_run_per_user(database):
    enqueued = []

    async def scenario():
        async with database() as factory:
            await seed_forum_user(factory)
            await seed_forum_user(factory, user_id="u-bob", forum_username="bob")
            service = SchedulerService()
            service.configure(factory)
            return await service.run_daily_sweep(enqueue=enqueued.append)

    summary = asyncio.run(scenario())
    assert summary == {"status": "ok", "dispatched": 2, "failed": 0}
    assert sorted(p["user_id"] for p in enqueued) == ["u-alice", "u-bob"]


def test_daily_sweep_continues_after_a_failed_enqueue(database):
    enqueued = []

    def enqueue(payload):
        if payload["user_id"] == "u-alice":
            raise RuntimeError("broker unavailable")
        enqueued.append(payload)

    async def scenario():
        async with database() as factory:
            await seed_forum_user(factory)
            await seed_forum_user(factory, user_id="u-bob", forum_username="bob")
            service = SchedulerService()
            service.configure(factory)
            return await service.run_daily_sweep(enqueue=enqueue)

    summary = asyncio.run(scenario())
    assert summary == {"status": "ok", "dispatched": 1, "failed": 1}
    assert [p["user_id"] for p in enqueued] == ["u-bob"]


def test_scheduler_respects_disabled_flag():
    service = SchedulerService()
    service.start()
    assert service.is_running() is False
    assert service.get_jobs() == []


def test_ping_and_platforms():
    client = TestClient(app)
    assert client.get("/ping").json() == {"status": "ok"}
    assert client.get("/api/engine/platforms").json() == ["discourse"]


def test_run_rejects_unknown_platform():
    client = TestClient(app)
    resp = client.post("/api/engine/run", json={"platform": "myspace", "user_id": "u", "project_id": "p"})
    assert resp.status_code == 400


def test_run_validates_body():
    client = TestClient(app)
    resp = client.post("/api/engine/run", json={"platform": "discourse"})
    assert resp.status_code == 422


def test_inline_run_configuration_error_is_422(monkeypatch):
    from signal_engine import engine
    from signal_engine.errors import ConfigurationError

    async def failing_run(request):
        raise ConfigurationError("Signal strength 'nope' not found")

    monkeypatch.setattr(engine, "run_engine", failing_run)
    client = TestClient(app)
    resp = client.post("/api/engine/run", json={"platform": "discourse", "user_id": "u", "project_id": "p"})
    assert resp.status_code == 422
    assert "nope" in resp.json()["detail"]


def test_worker_task_never_retries_configuration_errors():
    from signal_engine.errors import ConfigurationError
    from signal_engine.worker.tasks import process_user

    assert process_user.name == "engine.process_user"
    assert ConfigurationError in process_user.dont_autoretry_for
