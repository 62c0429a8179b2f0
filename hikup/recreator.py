from __future__ import annotations

import logging
import re
import time
from enum import Enum
from typing import Any, Callable, Protocol, TypeVar

from . import db
from .docker_ops import RUNTIME_ERRORS, ContainerSnapshot
from .settings import settings

log = logging.getLogger("hikup.recreator")

T = TypeVar("T")

SHADOW_MARKER = "-hikup-old-"
SHADOW_NAME_RE = re.compile(r"-hikup-old-[0-9a-f]{12}$")


class Step(str, Enum):
    INSPECT = "inspect"
    PULL = "pull"
    STOP = "stop"
    REMOVE = "remove"
    CREATE = "create"
    START = "start"


class RecreateError(Exception):
    """One container's update was abandoned at `step`."""

    step: Step

    def __init__(self, container: str, message: str):
        super().__init__(f"{self.step.value} failed for {container}: {message}")
        self.container = container


class InspectFailed(RecreateError):
    step = Step.INSPECT


class PullFailed(RecreateError):
    step = Step.PULL


class StopFailed(RecreateError):
    step = Step.STOP


class RemoveFailed(RecreateError):
    step = Step.REMOVE


class CreateFailed(RecreateError):
    step = Step.CREATE


class StartFailed(RecreateError):
    step = Step.START


_ERRORS: dict[Step, type[RecreateError]] = {
    cls.step: cls for cls in (InspectFailed, PullFailed, StopFailed, RemoveFailed, CreateFailed, StartFailed)
}


class ContainerRuntime(Protocol):
    def inspect(self, container_id: str) -> ContainerSnapshot: ...
    def pull(self, image: str) -> None: ...
    def stop(self, container_id: str, timeout: int) -> None: ...
    def remove(self, container_id: str) -> None: ...
    def rename(self, container_id: str, name: str) -> None: ...
    def create(self, snapshot: ContainerSnapshot) -> str: ...
    def start(self, container_id: str) -> None: ...
    def is_running(self, container_id: str) -> bool: ...


def shadow_name(snapshot: ContainerSnapshot) -> str:
    return f"{snapshot.name}{SHADOW_MARKER}{snapshot.short_id}"


def is_shadow_name(name: str) -> bool:
    return bool(SHADOW_NAME_RE.search(name))


class Recreator:
    """Replaces one container with a fresh one built from the same spec.

    Pipeline: inspect -> pull -> stop -> remove -> create -> start.
    A failing step raises the matching RecreateError and nothing after it runs.

    With `shadow=True` the remove step renames the original aside; it is
    deleted only once the replacement is confirmed running, and restored if
    create or start fails.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        stop_timeout_s: int = settings.stop_timeout_s,
        shadow: bool = settings.shadow_recreate,
        verify_delay_s: float = settings.verify_delay_s,
    ):
        self.runtime = runtime
        self.stop_timeout_s = max(0, int(stop_timeout_s))
        self.shadow = shadow
        self.verify_delay_s = max(0.0, float(verify_delay_s))

    def recreate(self, container_id: str) -> str:
        """Run the pipeline for `container_id`; returns the new container id."""
        label = container_id[:12]
        snap: ContainerSnapshot = self._run(Step.INSPECT, label, self.runtime.inspect, container_id)
        label = snap.name or label
        log.info("Inspected %s (%s), image %s", label, snap.short_id, snap.image)

        self._run(Step.PULL, label, self.runtime.pull, snap.image)
        log.info("Pulled latest image for %s: %s", label, snap.image)

        self._run(Step.STOP, label, self.runtime.stop, snap.id, self.stop_timeout_s)
        log.info("Stopped %s", label)

        if self.shadow:
            return self._replace_with_shadow(snap, label)
        return self._replace_direct(snap, label)

    def _replace_direct(self, snap: ContainerSnapshot, label: str) -> str:
        self._run(Step.REMOVE, label, self.runtime.remove, snap.id)
        log.info("Removed %s", label)

        try:
            new_id: str = self._run(Step.CREATE, label, self.runtime.create, snap)
        except CreateFailed as e:
            log.critical("Container %s was removed but could not be recreated: %s", label, e)
            db.guarded(db.log_event, "CRITICAL", f"Container removed and not recreated: {e}", container=label)
            raise

        self._run(Step.START, label, self.runtime.start, new_id)
        log.info("Successfully updated container %s: %s -> %s", label, snap.short_id, new_id[:12])
        return new_id

    def _replace_with_shadow(self, snap: ContainerSnapshot, label: str) -> str:
        aside = shadow_name(snap)
        self._run(Step.REMOVE, label, self.runtime.rename, snap.id, aside)
        log.info("Renamed %s to %s", label, aside)

        new_id: str | None = None
        try:
            new_id = self._run(Step.CREATE, label, self.runtime.create, snap)
            self._run(Step.START, label, self.runtime.start, new_id)
            if snap.running:
                # A stopped original may be a one-shot job that exits right away.
                self._verify_running(label, new_id)
        except RecreateError as e:
            self._rollback(snap, aside, new_id, e)
            raise

        try:
            self.runtime.remove(snap.id)
        except RUNTIME_ERRORS as e:
            log.warning("Replacement for %s is running but old container %s was not removed: %s", label, aside, e)
            db.guarded(db.log_event, "WARN", f"Old container {aside} left behind: {e}", container=label)

        log.info("Successfully updated container %s: %s -> %s", label, snap.short_id, new_id[:12])
        return new_id

    def _verify_running(self, label: str, new_id: str) -> None:
        if self.verify_delay_s:
            time.sleep(self.verify_delay_s)
        running = self._run(Step.START, label, self.runtime.is_running, new_id)
        if not running:
            raise StartFailed(label, f"container {new_id[:12]} is not running after start")

    def _rollback(self, snap: ContainerSnapshot, aside: str, new_id: str | None, cause: RecreateError) -> None:
        label = snap.name
        log.warning("Rolling back %s after %s failure", label, cause.step.value)
        try:
            if new_id:
                self.runtime.remove(new_id)
            self.runtime.rename(snap.id, snap.name)
            if snap.running:
                self.runtime.start(snap.id)
        except RUNTIME_ERRORS as e:
            log.critical("Rollback of %s failed, original left as %s: %s", label, aside, e)
            db.guarded(db.log_event, "CRITICAL", f"Rollback failed, original left as {aside}: {e}", container=label)
            return
        log.info("Restored original container %s", label)
        db.guarded(db.log_event, "WARN", f"Update rolled back after {cause.step.value} failure", container=label)

    def _run(self, step: Step, label: str, fn: Callable[..., T], *args: Any) -> T:
        try:
            return fn(*args)
        except RUNTIME_ERRORS as e:
            log.error("Error during %s of container %s: %s", step.value, label, e)
            raise _ERRORS[step](label, str(e)) from e
