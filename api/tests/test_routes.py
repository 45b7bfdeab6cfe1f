"""Tests for the build, release, deploy and webhook endpoints."""

import hashlib
import hmac
import json

from controller.src.models.status import BuildStatus, DeployStatus, ReleaseStatus
from controller.src.worker import BUILD_QUEUE, DEPLOY_QUEUE

PIPELINE = """
steps:
  - name: build
    image: node:18
    commands: [npm ci, npm run build]
  - name: test
    image: node:18
    commands: [npm test]
"""

def built_release(store, app_id, version="v1"):
    release = store.create_release(app_id, version, image_ref=f"registry/web:{version}")
    return store.finalize_release(release.id, ReleaseStatus.BUILT)

def queued(queue, name):
    return [json.loads(item) for item in queue.lrange(name, 0, -1)]

def test_root(client):
    assert client.get("/").json()["name"] == "PaaStel"

def test_create_build_from_step_names(client, queue, app_id):
    response = client.post(
        f"/api/apps/{app_id}/builds",
        json={"steps": ["fetch", "build", "test"], "commit_sha": "abc123", "version": "v1"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["trigger"] == "api"
    assert [(s["position"], s["name"]) for s in body["steps"]] == [(1, "fetch"), (2, "build"), (3, "test")]

    [request] = queued(queue, BUILD_QUEUE)
    assert request["build_id"] == body["id"]
    assert request["version"] == "v1"
    assert [s["name"] for s in request["steps"]] == ["fetch", "build", "test"]

def test_create_build_from_pipeline(client, queue, app_id):
    response = client.post(f"/api/apps/{app_id}/builds", json={"pipeline": PIPELINE, "trigger": "manual"})

    assert response.status_code == 201
    assert response.json()["trigger"] == "manual"
    [request] = queued(queue, BUILD_QUEUE)
    assert request["steps"][0]["commands"] == ["npm ci", "npm run build"]

def test_create_build_uses_default_steps(client, app_id):
    response = client.post(f"/api/apps/{app_id}/builds", json={})

    assert [s["name"] for s in response.json()["steps"]] == ["fetch", "build", "test"]

def test_create_build_rejects_empty_steps(client, queue, app_id):
    response = client.post(f"/api/apps/{app_id}/builds", json={"steps": []})

    assert response.status_code == 400
    assert response.json()["error"] == "InvalidInput"
    assert queued(queue, BUILD_QUEUE) == []

def test_create_build_rejects_bad_pipeline(client, app_id):
    response = client.post(f"/api/apps/{app_id}/builds", json={"pipeline": "steps: 5"})
    assert response.status_code == 400

def test_create_build_unknown_app(client):
    response = client.post("/api/apps/999/builds", json={"steps": ["build"]})

    assert response.status_code == 404
    assert response.json()["error"] == "AppNotFound"

def test_get_and_list_builds(client, app_id):
    build_id = client.post(f"/api/apps/{app_id}/builds", json={"steps": ["build"]}).json()["id"]

    assert client.get(f"/api/builds/{build_id}").json()["id"] == build_id
    assert [b["id"] for b in client.get(f"/api/apps/{app_id}/builds").json()] == [build_id]
    assert client.get("/api/builds/999").status_code == 404

def test_build_logs_by_range(client, log_sink, app_id):
    build = client.post(f"/api/apps/{app_id}/builds", json={"steps": ["build"]}).json()
    step_id = build["steps"][0]["id"]
    for i in range(4):
        log_sink.append_chunk(build["id"], step_id, i, f"line {i}\n")

    response = client.get(f"/api/builds/{build['id']}/logs", params={"step_id": step_id, "start": 1, "end": 3})

    assert response.status_code == 200
    assert [c["content"] for c in response.json()] == ["line 1\n", "line 2\n"]

def test_build_logs_bad_range(client, app_id):
    build_id = client.post(f"/api/apps/{app_id}/builds", json={"steps": ["build"]}).json()["id"]

    response = client.get(f"/api/builds/{build_id}/logs", params={"start": 3, "end": 1})
    assert response.status_code == 400

def test_cancel_build(client, app_id):
    build_id = client.post(f"/api/apps/{app_id}/builds", json={"steps": ["build"]}).json()["id"]

    first = client.post(f"/api/builds/{build_id}/cancel")
    second = client.post(f"/api/builds/{build_id}/cancel")

    assert first.json()["status"] == BuildStatus.CANCELED.value
    assert second.status_code == 200
    assert second.json()["status"] == BuildStatus.CANCELED.value

def test_release_needs_succeeded_build(client, app_id):
    build_id = client.post(f"/api/apps/{app_id}/builds", json={"steps": ["build"]}).json()["id"]

    response = client.post(f"/api/builds/{build_id}/release", json={"version": "v1"})
    assert response.status_code == 400

def test_list_and_get_releases(client, store, app_id):
    release = built_release(store, app_id)

    listed = client.get(f"/api/apps/{app_id}/releases").json()
    assert [r["version"] for r in listed] == ["v1"]
    assert client.get(f"/api/releases/{release.id}").json()["status"] == "built"

def test_deploy_release(client, store, queue, app_id):
    release = built_release(store, app_id)

    response = client.post(f"/api/releases/{release.id}/deploys", json={"environment": "production"})

    assert response.status_code == 201
    deploy = response.json()
    assert deploy["status"] == DeployStatus.PENDING.value
    assert deploy["environment"] == "production"
    assert [r["deploy_id"] for r in queued(queue, DEPLOY_QUEUE)] == [deploy["id"]]
    assert client.get(f"/api/deploys/{deploy['id']}").json()["release_id"] == release.id
    assert [d["id"] for d in client.get(f"/api/apps/{app_id}/deploys").json()] == [deploy["id"]]

def test_deploy_pending_release_refused(client, store, queue, app_id):
    release = store.create_release(app_id, "v1")

    response = client.post(f"/api/releases/{release.id}/deploys", json={"environment": "production"})

    assert response.status_code == 409
    assert response.json()["error"] == "ReleaseNotReady"
    assert queued(queue, DEPLOY_QUEUE) == []

def test_cancel_pending_deploy(client, store, app_id):
    release = built_release(store, app_id)
    deploy_id = client.post(f"/api/releases/{release.id}/deploys", json={"environment": "staging"}).json()["id"]

    response = client.post(f"/api/deploys/{deploy_id}/cancel")

    assert response.json()["status"] == DeployStatus.CANCELED.value

def test_cancel_running_deploy_sets_signal(client, store, signals, app_id):
    release = built_release(store, app_id)
    deploy = store.create_deploy(release, environment="staging")
    store.transition_deploy(deploy.id, DeployStatus.PENDING, DeployStatus.RUNNING)

    response = client.post(f"/api/deploys/{deploy.id}/cancel")

    assert response.json()["status"] == DeployStatus.RUNNING.value
    assert signals.cancel_requested("deploy", deploy.id)

def test_delete_release(client, store, app_id):
    unused = built_release(store, app_id, "v1")
    deployed = built_release(store, app_id, "v2")
    client.post(f"/api/releases/{deployed.id}/deploys", json={"environment": "production"})

    assert client.delete(f"/api/releases/{unused.id}").status_code == 204
    assert client.get(f"/api/releases/{unused.id}").status_code == 404

    response = client.delete(f"/api/releases/{deployed.id}")
    assert response.status_code == 409
    assert response.json()["error"] == "ReleaseInUse"

def push_payload(clone_url="https://github.com/acme/web.git"):
    return {
        "ref": "refs/heads/main",
        "after": "feedbeef",
        "repository": {
            "name": "web",
            "full_name": "acme/web",
            "clone_url": clone_url,
            "html_url": clone_url[: -len(".git")],
        },
        "head_commit": {"id": "feedbeef", "message": "Ship it"},
        "pusher": {"name": "dev"},
    }

def test_push_webhook_queues_build(client, store, queue, app_id):
    response = client.post(
        "/api/webhooks/github",
        json=push_payload(),
        headers={"X-GitHub-Event": "push"},
    )

    body = response.json()
    assert body["status"] == "queued"
    [build_id] = body["builds"]
    build = store.get_build(build_id)
    assert build.app_id == app_id
    assert build.trigger.value == "git_push"
    assert build.commit_sha == "feedbeef"
    assert build.branch == "main"
    assert [r["build_id"] for r in queued(queue, BUILD_QUEUE)] == [build_id]

def test_push_for_unknown_repo_is_skipped(client, queue, app_id):
    response = client.post(
        "/api/webhooks/github",
        json=push_payload("https://github.com/acme/other.git"),
        headers={"X-GitHub-Event": "push"},
    )

    assert response.json()["status"] == "skipped"
    assert queued(queue, BUILD_QUEUE) == []

def test_ping_webhook(client):
    response = client.post("/api/webhooks/github", json={"zen": "hi"}, headers={"X-GitHub-Event": "ping"})
    assert response.json()["status"] == "pong"

def test_webhook_signature_checked(client, api_settings, app_id):
    api_settings.github_webhook_secret = "s3cret"
    body = json.dumps(push_payload()).encode()

    bad = client.post(
        "/api/webhooks/github",
        content=body,
        headers={"X-GitHub-Event": "push", "X-Hub-Signature-256": "sha256=bad"},
    )
    assert bad.status_code == 401

    signature = "sha256=" + hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
    good = client.post(
        "/api/webhooks/github",
        content=body,
        headers={
            "X-GitHub-Event": "push",
            "X-Hub-Signature-256": signature,
            "Content-Type": "application/json",
        },
    )
    assert good.json()["status"] == "queued"

def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/health/db").json()["database"] == "connected"
    assert client.get("/health/redis").json()["redis"] == "connected"
    assert client.get("/health/all").json()["status"] == "healthy"
