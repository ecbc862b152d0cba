"""Shared fixtures.

``docker`` is an in‑memory fake of the small part of the ``aiodocker``
API used by the container tier.  Every call is recorded so tests can
assert ordering and that no container outlives ``execute``.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import pytest
from aiodocker.exceptions import DockerError


class FakeContainer:
    def __init__(self, docker: "FakeDocker", name: str, config: Dict[str, Any]) -> None:
        self.docker = docker
        self.name = name
        self.config = config

    async def start(self) -> None:
        self.docker.calls.append(("start", self.name))

    async def wait(self) -> Dict[str, Any]:
        self.docker.calls.append(("wait", self.name))
        if self.docker.hang:
            await asyncio.sleep(3600)
        return {"StatusCode": self.docker.exit_code}

    async def log(self, stdout: bool = False, stderr: bool = False) -> List[str]:
        self.docker.calls.append(("log", self.name))
        if self.docker.log_error:
            raise DockerError(500, {"message": "log stream broke"})
        return list(self.docker.stdout if stdout else self.docker.stderr)

    async def delete(self, force: bool = False) -> None:
        self.docker.calls.append(("delete", self.name))
        assert force
        if self.docker.delete_error is not None:
            raise DockerError(self.docker.delete_error, {"message": "cannot remove"})
        self.docker.live.discard(self.name)


class FakeContainers:
    def __init__(self, docker: "FakeDocker") -> None:
        self.docker = docker

    async def create(self, config: Dict[str, Any], name: Optional[str] = None) -> FakeContainer:
        self.docker.calls.append(("create", name))
        if self.docker.create_error:
            raise DockerError(500, {"message": "no space left"})
        self.docker.live.add(name)
        self.docker.created.append(config)
        return FakeContainer(self.docker, name, config)


class FakeImages:
    def __init__(self, docker: "FakeDocker") -> None:
        self.docker = docker

    async def inspect(self, image: str) -> Dict[str, Any]:
        self.docker.calls.append(("inspect", image))
        if image not in self.docker.images_present:
            raise DockerError(404, {"message": f"No such image: {image}"})
        return {"Id": "sha256:fake"}

    async def pull(self, repo: str, tag: Optional[str] = None) -> List[Dict[str, Any]]:
        self.docker.calls.append(("pull", f"{repo}:{tag}"))
        if self.docker.pull_error:
            return [{"status": "Pulling"}, {"error": "manifest unknown"}]
        self.docker.images_present.add(f"{repo}:{tag}")
        return [{"status": "Downloaded newer image"}]


class FakeDocker:
    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.live: set = set()
        self.created: List[Dict[str, Any]] = []
        self.images_present = {"python:3.12-slim"}
        self.exit_code = 0
        self.stdout = ["Hello from container\n"]
        self.stderr: List[str] = []
        self.hang = False
        self.log_error = False
        self.create_error = False
        self.delete_error: Optional[int] = None
        self.pull_error = False
        self.ping_error = False
        self.closed = False
        self.containers = FakeContainers(self)
        self.images = FakeImages(self)

    async def version(self) -> Dict[str, Any]:
        self.calls.append(("version", None))
        if self.ping_error:
            raise DockerError(500, {"message": "daemon unavailable"})
        return {"Version": "24.0.0"}

    async def close(self) -> None:
        self.closed = True

    def names(self, kind: str) -> List[str]:
        return [target for call, target in self.calls if call == kind]

    def kinds(self) -> List[str]:
        return [call for call, _ in self.calls if call in {"create", "start", "wait", "log", "delete"}]


@pytest.fixture
def docker():
    return FakeDocker()
