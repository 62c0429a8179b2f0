from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping

import docker
import requests
from docker.errors import APIError, DockerException, InvalidArgument
from docker.types import Mount

from .settings import Settings, settings

log = logging.getLogger("hikup.docker_ops")

# What a failed SDK call raises: daemon/API errors and transport failures (timeouts included).
RUNTIME_ERRORS = (DockerException, requests.exceptions.RequestException)

IMAGE_ID_RE = re.compile(r"^(sha256:)?[0-9a-f]{64}$")


class ClientInitError(Exception):
    """The Docker engine is unreachable at startup."""


class ListError(Exception):
    """Listing containers failed; the cycle is skipped."""


@dataclass(frozen=True)
class ContainerRef:
    id: str
    name: str
    image: str

    @property
    def short_id(self) -> str:
        return self.id[:12]


def _split_links(links: tuple[str, ...]) -> list[tuple[str, str]]:
    out: list[tuple[str, str]] = []
    for link in links:
        name, _, alias = link.partition(":")
        out.append((name, alias))
    return out


@dataclass(frozen=True)
class EndpointSettings:
    """Per-network attachment settings worth carrying over to a new container."""

    network_id: str | None = None
    ipv4_address: str | None = None
    ipv6_address: str | None = None
    link_local_ips: tuple[str, ...] = ()
    aliases: tuple[str, ...] = ()
    links: tuple[str, ...] = ()
    mac_address: str | None = None

    @classmethod
    def from_inspect(cls, raw: Mapping[str, Any] | None, container_id: str) -> EndpointSettings:
        raw = raw or {}
        ipam = raw.get("IPAMConfig") or {}
        # Older engines list the container's own short id as an alias; it would be stale.
        own = {container_id, container_id[:12]}
        return cls(
            network_id=raw.get("NetworkID") or None,
            ipv4_address=ipam.get("IPv4Address") or None,
            ipv6_address=ipam.get("IPv6Address") or None,
            link_local_ips=tuple(ipam.get("LinkLocalIPs") or ()),
            aliases=tuple(a for a in raw.get("Aliases") or () if a not in own),
            links=tuple(raw.get("Links") or ()),
            mac_address=raw.get("MacAddress") or None,
        )

    def endpoint_kwargs(self) -> dict[str, Any]:
        """Keyword arguments shared by create_endpoint_config and connect_container_to_network."""
        kwargs: dict[str, Any] = {}
        if self.aliases:
            kwargs["aliases"] = list(self.aliases)
        if self.links:
            kwargs["links"] = _split_links(self.links)
        if self.ipv4_address:
            kwargs["ipv4_address"] = self.ipv4_address
        if self.ipv6_address:
            kwargs["ipv6_address"] = self.ipv6_address
        if self.link_local_ips:
            kwargs["link_local_ips"] = list(self.link_local_ips)
        return kwargs


def _as_tuple(value: Any) -> tuple[str, ...] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return (value,)
    return tuple(value)


@dataclass(frozen=True)
class ContainerSnapshot:
    """Point-in-time copy of a container's runtime configuration.

    Built from a deep copy of the inspect payload and never mutated; the
    create kwargs are rebuilt from it on every call.
    """

    id: str
    name: str
    image: str
    running: bool

    # Container-level settings
    command: tuple[str, ...] | None
    env: tuple[str, ...]
    exposed_ports: dict[str, Any]
    labels: dict[str, str]
    volumes: dict[str, Any]
    working_dir: str | None
    entrypoint: tuple[str, ...] | None
    user: str | None
    tty: bool
    stdin_open: bool

    # Host-level settings
    binds: tuple[str, ...]
    mounts: tuple[dict[str, Any], ...]
    port_bindings: dict[str, Any]
    restart_policy: dict[str, Any]
    network_mode: str | None
    privileged: bool
    publish_all_ports: bool
    volumes_from: tuple[str, ...]

    networks: dict[str, EndpointSettings]

    @classmethod
    def from_inspect(cls, attrs: Mapping[str, Any]) -> ContainerSnapshot:
        attrs = copy.deepcopy(dict(attrs))
        config = attrs.get("Config") or {}
        host = attrs.get("HostConfig") or {}
        state = attrs.get("State") or {}
        networks = (attrs.get("NetworkSettings") or {}).get("Networks") or {}
        container_id = attrs["Id"]

        return cls(
            id=container_id,
            name=(attrs.get("Name") or "").lstrip("/"),
            image=config.get("Image") or attrs.get("Image") or "",
            running=bool(state.get("Running")),
            command=_as_tuple(config.get("Cmd")),
            env=tuple(config.get("Env") or ()),
            exposed_ports=dict(config.get("ExposedPorts") or {}),
            labels=dict(config.get("Labels") or {}),
            volumes=dict(config.get("Volumes") or {}),
            working_dir=config.get("WorkingDir") or None,
            entrypoint=_as_tuple(config.get("Entrypoint")),
            user=config.get("User") or None,
            tty=bool(config.get("Tty")),
            stdin_open=bool(config.get("OpenStdin")),
            binds=tuple(host.get("Binds") or ()),
            mounts=tuple(host.get("Mounts") or ()),
            port_bindings=dict(host.get("PortBindings") or {}),
            restart_policy=dict(host.get("RestartPolicy") or {}),
            network_mode=host.get("NetworkMode") or None,
            privileged=bool(host.get("Privileged")),
            publish_all_ports=bool(host.get("PublishAllPorts")),
            volumes_from=tuple(host.get("VolumesFrom") or ()),
            networks={n: EndpointSettings.from_inspect(ep, container_id) for n, ep in networks.items()},
        )

    @property
    def short_id(self) -> str:
        return self.id[:12]

    def container_kwargs(self) -> dict[str, Any]:
        return {
            "image": self.image,
            "name": self.name,
            "command": list(self.command) if self.command is not None else None,
            "environment": list(self.env) or None,
            "ports": copy.deepcopy(self.exposed_ports) or None,
            "labels": dict(self.labels) or None,
            "volumes": copy.deepcopy(self.volumes) or None,
            "working_dir": self.working_dir,
            "entrypoint": list(self.entrypoint) if self.entrypoint is not None else None,
            "user": self.user,
            "tty": self.tty,
            "stdin_open": self.stdin_open,
        }

    def host_config_kwargs(self) -> dict[str, Any]:
        # The engine rejects published ports on a network namespace it does not own.
        mode = self.network_mode or ""
        publishes = mode != "host" and not mode.startswith("container:")
        port_bindings = {}
        if publishes:
            port_bindings = {
                port: [dict(b) for b in bindings] for port, bindings in self.port_bindings.items() if bindings
            }
        mounts = [
            Mount(
                target=m["Target"],
                source=m.get("Source") or None,
                type=m.get("Type") or "volume",
                read_only=bool(m.get("ReadOnly")),
                propagation=(m.get("BindOptions") or {}).get("Propagation"),
            )
            for m in self.mounts
        ]
        return {
            "binds": list(self.binds) or None,
            "mounts": mounts or None,
            "port_bindings": port_bindings or None,
            "restart_policy": dict(self.restart_policy) if self.restart_policy.get("Name") else None,
            "network_mode": self.network_mode,
            "privileged": self.privileged,
            "publish_all_ports": self.publish_all_ports and publishes,
            "volumes_from": list(self.volumes_from) or None,
        }

    def primary_network(self) -> str | None:
        """Network attached at create time; None when the mode has no endpoints."""
        mode = self.network_mode or "default"
        if mode in {"host", "none"} or mode.startswith("container:"):
            return None
        if mode == "default":
            mode = "bridge"
        return mode if mode in self.networks else None

    def extra_networks(self) -> list[str]:
        """Networks connected after create (the engine takes one at create time)."""
        mode = self.network_mode or "default"
        if mode in {"host", "none"} or mode.startswith("container:"):
            return []
        primary = self.primary_network()
        return [n for n in self.networks if n != primary]


class DockerRuntime:
    """Thin adapter over the docker SDK low-level client.

    Calls raise the SDK's own exceptions (see RUNTIME_ERRORS) except
    list_containers, which wraps them in ListError.
    """

    def __init__(self, api: docker.APIClient, pull_api: docker.APIClient | None = None):
        self.api = api
        self.pull_api = pull_api or api

    @classmethod
    def from_env(cls, s: Settings = settings) -> DockerRuntime:
        """Connect using DOCKER_HOST & co. Pulls get their own, longer deadline."""
        try:
            client = docker.from_env(timeout=s.api_timeout_s)
            client.ping()
            pull_client = docker.from_env(timeout=s.pull_timeout_s)
        except RUNTIME_ERRORS as e:
            raise ClientInitError(f"cannot connect to the Docker engine: {e}") from e
        return cls(client.api, pull_client.api)

    def list_containers(self) -> list[ContainerRef]:
        try:
            raw = self.api.containers(all=True)
        except RUNTIME_ERRORS as e:
            raise ListError(f"listing containers failed: {e}") from e

        refs: list[ContainerRef] = []
        for c in raw:
            names = [n.lstrip("/") for n in c.get("Names") or ()]
            # Legacy links add "<other>/<alias>" names; the real name has no slash.
            own = [n for n in names if "/" not in n]
            name = (own or names or [c["Id"][:12]])[0]
            refs.append(ContainerRef(id=c["Id"], name=name, image=c.get("Image") or ""))
        return refs

    def inspect(self, container_id: str) -> ContainerSnapshot:
        return ContainerSnapshot.from_inspect(self.api.inspect_container(container_id))

    def pull(self, image: str) -> None:
        if not image or IMAGE_ID_RE.match(image):
            raise InvalidArgument(f"'{image}' is a local image id, not a pullable reference")

        log.info("Pulling image %s", image)
        for line in self.pull_api.pull(image, stream=True, decode=True):
            if "error" in line:
                raise APIError(line["error"])
            if "status" in line:
                log.debug("  %s %s", line.get("id", ""), line["status"])

    def stop(self, container_id: str, timeout: int) -> None:
        self.api.stop(container_id, timeout=timeout)

    def remove(self, container_id: str) -> None:
        # Named volumes and links survive; the container itself always goes.
        self.api.remove_container(container_id, v=False, link=False, force=True)

    def rename(self, container_id: str, name: str) -> None:
        self.api.rename(container_id, name)

    def create(self, snapshot: ContainerSnapshot) -> str:
        """Create a stopped container from `snapshot`; returns its id."""
        host_config = self.api.create_host_config(**snapshot.host_config_kwargs())

        networking_config = None
        primary = snapshot.primary_network()
        if primary:
            ep = snapshot.networks[primary]
            endpoint = self.api.create_endpoint_config(mac_address=ep.mac_address, **ep.endpoint_kwargs())
            networking_config = self.api.create_networking_config({primary: endpoint})

        resp = self.api.create_container(
            host_config=host_config,
            networking_config=networking_config,
            use_config_proxy=False,
            **snapshot.container_kwargs(),
        )
        new_id = resp["Id"]
        for warning in resp.get("Warnings") or ():
            log.warning("Engine warning creating %s: %s", snapshot.name, warning)

        try:
            for net in snapshot.extra_networks():
                self.api.connect_container_to_network(new_id, net, **snapshot.networks[net].endpoint_kwargs())
        except RUNTIME_ERRORS:
            self.discard(new_id)
            raise
        return new_id

    def start(self, container_id: str) -> None:
        self.api.start(container_id)

    def is_running(self, container_id: str) -> bool:
        state = self.api.inspect_container(container_id).get("State") or {}
        return bool(state.get("Running")) and not state.get("Restarting")

    def discard(self, container_id: str) -> None:
        """Best-effort force removal of a half-built container."""
        try:
            self.api.remove_container(container_id, v=False, link=False, force=True)
        except RUNTIME_ERRORS:
            log.exception("Could not remove container %s", container_id[:12])
