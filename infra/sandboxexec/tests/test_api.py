"""
API tests for the sandboxed execution service.

These tests exercise the HTTP endpoints using FastAPI's TestClient
against the OS tier rooted in a temporary directory.  They verify
authentication, the health check, language discovery, code execution
and the mapping of sandbox errors to HTTP status codes.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from sandboxexec.api.main import create_app
from sandboxexec.config import ExecutionEnv, SandboxConfig
from sandboxexec.executor.os_sandbox import OsSandbox


API_KEY = "test-key"
API_KEY_HEADER = {"x-api-key": API_KEY}


@pytest.fixture
def client(tmp_path):
    config = SandboxConfig(
        execution_env=ExecutionEnv.OS,
        allowed_dir=tmp_path,
        allowed_langs=["python", "shell"],
        default_timeout_secs=5,
    )
    app = create_app(config=config, api_key=API_KEY)
    with TestClient(app) as test_client:
        yield test_client


def test_missing_api_key_is_rejected(client):
    response = client.get("/health")
    assert response.status_code == 401
    assert response.json() == {"detail": "Invalid API key"}


def test_health(client):
    response = client.get("/health", headers=API_KEY_HEADER)
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "backend": "os"}


def test_languages(client):
    response = client.get("/v1/languages", headers=API_KEY_HEADER)
    assert response.status_code == 200
    assert response.json() == {
        "backend": "os",
        "security_level": 1,
        "languages": ["python", "shell"],
    }


def test_execute_python_simple(client):
    response = client.post("/exec", json={"code": "print(1 + 1)"}, headers=API_KEY_HEADER)
    assert response.status_code == 200
    data = response.json()
    assert data["stdout"].strip() == "2"
    assert data["exit_code"] == 0
    assert data["success"] is True
    assert data["timed_out"] is False


def test_execute_bash_with_stdin(client):
    payload = {"language": "bash", "code": "read line; echo \"got $line\"", "stdin": "test bash\n"}
    response = client.post("/exec", json=payload, headers=API_KEY_HEADER)
    assert response.status_code == 200
    assert response.json()["stdout"].strip() == "got test bash"


def test_failing_program_is_not_an_http_error(client):
    response = client.post(
        "/exec", json={"code": "raise SystemExit(4)"}, headers=API_KEY_HEADER
    )
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert data["exit_code"] == 4


def test_timeout(client):
    payload = {"code": "import time; time.sleep(30)", "timeout_secs": 0.5}
    response = client.post("/exec", json=payload, headers=API_KEY_HEADER)
    assert response.status_code == 200
    data = response.json()
    assert data["timed_out"] is True
    assert data["exit_code"] is None


@pytest.mark.parametrize("language", ["cobol", "ruby", "rust"])
def test_unsupported_language_is_bad_request(client, language):
    response = client.post(
        "/exec", json={"language": language, "code": "x"}, headers=API_KEY_HEADER
    )
    assert response.status_code == 400


def test_escaping_working_dir_is_forbidden(client):
    payload = {"code": "print(1)", "working_dir": "../../etc"}
    response = client.post("/exec", json=payload, headers=API_KEY_HEADER)
    assert response.status_code == 403


def test_spawn_failure_is_service_unavailable(client, tmp_path):
    empty_bin = tmp_path / "empty-bin"
    empty_bin.mkdir()
    payload = {"code": "print(1)", "env": {"PATH": str(empty_bin)}}
    response = client.post("/exec", json=payload, headers=API_KEY_HEADER)
    assert response.status_code == 503


def test_non_positive_timeout_is_rejected(client):
    response = client.post(
        "/exec", json={"code": "print(1)", "timeout_secs": 0}, headers=API_KEY_HEADER
    )
    assert response.status_code == 422


def test_injected_executor_without_api_key(tmp_path):
    app = create_app(executor=OsSandbox(tmp_path), api_key="")
    with TestClient(app) as test_client:
        response = test_client.post("/exec", json={"language": "sh", "code": "echo hi"})
    assert response.status_code == 200
    assert response.json()["stdout"] == "hi\n"
