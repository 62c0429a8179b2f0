import dataclasses

import pytest
from docker.errors import APIError

from hikup import db
from hikup.docker_ops import ContainerRef, ContainerSnapshot, ListError


@pytest.fixture(autouse=True)
def journal(tmp_path, monkeypatch):
    """Point the sqlite journal at a per-test database."""
    monkeypatch.setattr(db, "settings", dataclasses.replace(db.settings, db_path=str(tmp_path / "journal.db")))
    db.init_db()
    return db


def _attrs(name="web", cid=None, image="nginx:latest", running=True, networks=None, **config):
    cid = cid or (name.encode().hex() * 64)[:64]
    return {
        "Id": cid,
        "Name": f"/{name}",
        "Image": "sha256:" + "a" * 64,
        "State": {"Running": running, "Restarting": False},
        "Config": {
            "Image": image,
            "Cmd": ["nginx", "-g", "daemon off;"],
            "Env": ["PATH=/usr/bin", "MODE=prod"],
            "ExposedPorts": {"80/tcp": {}},
            "Labels": {"com.example.role": "frontend"},
            "Volumes": {"/data": {}},
            "WorkingDir": "/srv",
            "Entrypoint": ["/docker-entrypoint.sh"],
            "User": "",
            "Tty": False,
            "OpenStdin": False,
            **config,
        },
        "HostConfig": {
            "Binds": ["/srv/www:/usr/share/nginx/html:ro"],
            "PortBindings": {"80/tcp": [{"HostIp": "", "HostPort": "8080"}]},
            "RestartPolicy": {"Name": "unless-stopped", "MaximumRetryCount": 0},
            "NetworkMode": "frontend",
            "Privileged": False,
            "PublishAllPorts": False,
            "VolumesFrom": None,
        },
        "NetworkSettings": {
            "Networks": networks
            if networks is not None
            else {
                "frontend": {
                    "IPAMConfig": {"IPv4Address": "172.30.0.10"},
                    "Aliases": ["www", cid[:12]],
                    "Links": None,
                    "NetworkID": "net1",
                    "MacAddress": "02:42:ac:1e:00:0a",
                }
            }
        },
    }


@pytest.fixture
def inspect_attrs():
    """Factory for `docker inspect`-shaped payloads."""
    return _attrs


class FakeRuntime:
    """In-memory stand-in for DockerRuntime that records every call."""

    def __init__(self, names=(), fail_on=(), running_after_start=True):
        self.attrs = {}
        self.refs = []
        for name in names:
            self.add(name)
        self.fail_on = set(fail_on)
        self.running_after_start = running_after_start
        self.list_error = False
        self.calls = []
        self._created = 0

    def add(self, name, **kwargs):
        a = _attrs(name, **kwargs)
        self.attrs[a["Id"]] = a
        self.refs.append(ContainerRef(id=a["Id"], name=name, image=a["Config"]["Image"]))
        return a["Id"]

    def _call(self, op, *args):
        self.calls.append((op, args))
        if op in self.fail_on:
            raise APIError(f"{op} exploded")

    def ops(self):
        return [op for op, _ in self.calls]

    def list_containers(self):
        if self.list_error:
            raise ListError("engine unreachable")
        return list(self.refs)

    def inspect(self, container_id):
        self._call("inspect", container_id)
        return ContainerSnapshot.from_inspect(self.attrs[container_id])

    def pull(self, image):
        self._call("pull", image)

    def stop(self, container_id, timeout):
        self._call("stop", container_id, timeout)

    def remove(self, container_id):
        self._call("remove", container_id)

    def rename(self, container_id, name):
        self._call("rename", container_id, name)

    def create(self, snapshot):
        self._call("create", snapshot.name)
        self._created += 1
        return f"{self._created:064x}"

    def start(self, container_id):
        self._call("start", container_id)

    def is_running(self, container_id):
        self._call("is_running", container_id)
        return self.running_after_start


@pytest.fixture
def fake_runtime():
    """Factory: fake_runtime(names=[...], fail_on={...})."""
    return FakeRuntime
