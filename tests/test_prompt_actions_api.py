import uvicorn
from fastapi.testclient import TestClient
from prompt_engine.main import app, run
from prompt_engine.config import settings
from prompt_engine.services.orchestrator import start_of_local_day


def test_use_prompt_returns_editor_data_once(client, headers, make_user, make_prompt):
    prompt = make_prompt(make_user(), "Jazz", image_url="https://img.example.com/jazz.png")
    r = client.post(f"/prompts/{prompt.id}/use", headers=headers())
    assert r.status_code == 200
    js = r.json()
    assert js["prompt"]["status"] == "used"
    assert js["prompt"]["usedAt"]
    assert js["editorData"]["title"] == prompt.hook
    assert js["editorData"]["imageUrl"] == "https://img.example.com/jazz.png"
    assert js["editorData"]["sources"][0]["url"] == "https://example.com"

    again = client.post(f"/prompts/{prompt.id}/use", headers=headers())
    assert again.status_code == 409
    assert client.post(f"/prompts/{prompt.id}/dismiss", headers=headers()).status_code == 409


def test_dismissed_prompt_cannot_be_used(client, headers, make_user, make_prompt, repo):
    prompt = make_prompt(make_user())
    assert client.post(f"/prompts/{prompt.id}/dismiss", headers=headers()).json()["success"] is True
    assert repo.get_prompt(prompt.id).dismissed_at is not None
    assert client.post(f"/prompts/{prompt.id}/dismiss", headers=headers()).status_code == 409
    assert client.post(f"/prompts/{prompt.id}/use", headers=headers()).status_code == 409


def test_other_users_prompts_are_forbidden(client, headers, make_user, make_prompt):
    make_user("user-1")
    theirs = make_prompt(make_user("user-2"))
    for method, path in (("get", ""), ("post", "/use"), ("post", "/dismiss"), ("delete", "")):
        r = getattr(client, method)(f"/prompts/{theirs.id}{path}", headers=headers("user-1"))
        assert r.status_code == 403, (method, path)
    assert client.get("/prompts/missing", headers=headers("user-1")).status_code == 404


def test_delete_prompt(client, headers, make_user, make_prompt):
    prompt = make_prompt(make_user())
    assert client.delete(f"/prompts/{prompt.id}", headers=headers()).status_code == 200
    assert client.get(f"/prompts/{prompt.id}", headers=headers()).status_code == 404


def test_cancel_job(client, headers, make_user, repo):
    job = repo.create_job(make_user(), ["Jazz"])
    r = client.delete(f"/prompts/job/{job.id}", headers=headers())
    assert r.status_code == 200
    status = client.get(f"/prompts/job/{job.id}", headers=headers()).json()
    assert status["job"]["status"] == "cancelled"
    assert status["progress"]["stage"] == "done"

    again = client.delete(f"/prompts/job/{job.id}", headers=headers())
    assert again.status_code == 409
    assert again.json()["details"] == {"status": "cancelled"}


def test_jobs_are_owner_only(client, headers, make_user, repo):
    make_user("user-1")
    job = repo.create_job(make_user("user-2"), ["Jazz"])
    assert client.get(f"/prompts/job/{job.id}", headers=headers("user-1")).status_code == 403
    assert client.delete(f"/prompts/job/{job.id}", headers=headers("user-1")).status_code == 403
    assert client.get("/prompts/job/nope", headers=headers("user-1")).status_code == 404


def test_preferences_create_user_on_first_save(client, headers, repo):
    assert client.get("/preferences", headers=headers("new")).json()["interests"] == []
    r = client.put("/preferences", headers=headers("new"),
                   json={"interests": [" Jazz ", "Jazz", "", "Tea"], "writingLevel": "beginner"})
    assert r.status_code == 200
    assert r.json() == {"interests": ["Jazz", "Tea"], "writingReason": None, "writingLevel": "beginner"}
    assert repo.get_interests(repo.get_user_id("new")) == ["Jazz", "Tea"]


def test_cron_requires_secret(client, monkeypatch):
    assert client.post("/cron/generate-prompts").status_code == 401
    monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")
    assert client.get("/cron/generate-prompts", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_cron_runs_daily_sweep_once_per_day(client, monkeypatch, make_user, repo):
    monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")
    user_id = make_user()
    auth = {"Authorization": "Bearer s3cret"}

    r = client.post("/cron/generate-prompts", headers=auth)
    assert r.status_code == 200
    js = r.json()
    assert (js["processed"], js["succeeded"], js["failed"]) == (1, 1, 0)
    assert js["timestamp"]
    assert repo.has_job_since(user_id, start_of_local_day())

    assert client.get("/cron/generate-prompts", headers=auth).json()["processed"] == 0


def test_cron_open_in_development_without_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "ENVIRONMENT", "development")
    r = client.get("/cron/generate-prompts")
    assert r.status_code == 200
    assert r.json()["processed"] == 0


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_app_starts_and_stops_cleanly():
    with TestClient(app) as managed:
        assert managed.get("/healthz").status_code == 200


def test_run_serves_app_with_uvicorn(monkeypatch):
    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda target, **kw: calls.append((target, kw)))
    monkeypatch.setattr(settings, "PORT", 9001)
    run()
    assert calls == [("prompt_engine.main:app",
                      {"host": settings.HOST, "port": 9001, "log_level": "info", "reload": False})]
