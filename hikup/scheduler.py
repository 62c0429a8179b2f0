from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from threading import Event
from typing import Protocol

from . import db
from .docker_ops import ContainerRef, ListError
from .policy import PolicyStore
from .recreator import RecreateError, Recreator, is_shadow_name
from .selector import should_update
from .settings import settings

log = logging.getLogger("hikup.scheduler")


class ContainerLister(Protocol):
    def list_containers(self) -> list[ContainerRef]: ...


@dataclass
class ContainerOutcome:
    name: str
    container_id: str
    status: str  # updated|failed|skipped|selected
    new_id: str | None = None
    failed_step: str | None = None
    message: str = ""


@dataclass
class CycleReport:
    started_at: str
    duration_s: float = 0.0
    checked: int = 0
    selected: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    outcomes: list[ContainerOutcome] = field(default_factory=list)

    def decisions(self) -> dict[str, bool]:
        """name -> whether the container was selected for update."""
        return {o.name: o.status != "skipped" for o in self.outcomes}

    def summary(self) -> str:
        return (
            f"checked={self.checked} selected={self.selected} updated={self.updated} "
            f"failed={self.failed} skipped={self.skipped} in {self.duration_s:.1f}s"
        )


class Scheduler:
    """Polls the engine and recreates every container the policy selects."""

    def __init__(
        self,
        runtime: ContainerLister,
        store: PolicyStore,
        recreator: Recreator,
        force_all: bool = False,
        dry_run: bool = False,
        poll_interval_s: int = settings.poll_interval_s,
        list_retry_s: int = settings.list_retry_s,
    ):
        self.runtime = runtime
        self.store = store
        self.recreator = recreator
        self.force_all = force_all
        self.dry_run = dry_run
        self.poll_interval_s = max(1, int(poll_interval_s))
        self.list_retry_s = max(1, int(list_retry_s))
        self._stop = Event()

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run_forever(self) -> None:
        log.info(
            "Scheduler started (interval=%ss, force_all=%s, dry_run=%s)",
            self.poll_interval_s,
            self.force_all,
            self.dry_run,
        )
        db.guarded(db.log_event, "INFO", "Scheduler started")
        while not self._stop.is_set():
            try:
                report = self.run_cycle()
            except Exception:
                log.exception("Update cycle crashed (retrying in %ss)", self.list_retry_s)
                report = None
            wait = self.poll_interval_s if report is not None else self.list_retry_s
            self._stop.wait(wait)
        log.info("Scheduler stopped")
        db.guarded(db.log_event, "INFO", "Scheduler stopped")

    def run_cycle(self) -> CycleReport | None:
        """One poll: list, decide, recreate. Returns None when listing failed."""
        start = time.monotonic()
        report = CycleReport(started_at=db.utc_now())

        try:
            containers = self.runtime.list_containers()
        except ListError as e:
            log.error("Error listing containers: %s (retrying in %ss)", e, self.list_retry_s)
            db.guarded(db.log_event, "ERROR", f"Cycle skipped: {e}")
            return None

        for ref in containers:
            if self._stop.is_set():
                log.info("Stop requested, ending cycle early")
                break
            report.checked += 1
            report.outcomes.append(self._process(ref, report))

        report.duration_s = round(time.monotonic() - start, 2)
        log.info("Cycle complete: %s", report.summary())
        db.guarded(db.log_event, "INFO", f"Cycle complete: {report.summary()}")
        return report

    def _process(self, ref: ContainerRef, report: CycleReport) -> ContainerOutcome:
        if is_shadow_name(ref.name):
            log.warning("Skipping leftover container %s from an interrupted update", ref.name)
            report.skipped += 1
            return ContainerOutcome(ref.name, ref.id, "skipped", message="leftover from interrupted update")

        if not should_update(ref.name, self.force_all, self.store.snapshot()):
            log.debug("Container %s not selected", ref.name)
            report.skipped += 1
            return ContainerOutcome(ref.name, ref.id, "skipped")

        report.selected += 1
        if self.dry_run:
            log.info("Dry run: would update %s (%s)", ref.name, ref.image)
            return ContainerOutcome(ref.name, ref.id, "selected", message="dry run")

        log.info("Updating container %s (%s)", ref.name, ref.short_id)
        try:
            new_id = self.recreator.recreate(ref.id)
        except RecreateError as e:
            report.failed += 1
            db.guarded(db.record_update, ref.name, ref.id, "failed", failed_step=e.step.value, detail=str(e))
            return ContainerOutcome(ref.name, ref.id, "failed", failed_step=e.step.value, message=str(e))
        except Exception as e:
            log.exception("Unexpected error updating %s", ref.name)
            report.failed += 1
            detail = f"{type(e).__name__}: {e}"
            db.guarded(db.record_update, ref.name, ref.id, "failed", detail=detail)
            return ContainerOutcome(ref.name, ref.id, "failed", message=detail)

        report.updated += 1
        db.guarded(db.record_update, ref.name, ref.id, "updated", new_id=new_id)
        return ContainerOutcome(ref.name, ref.id, "updated", new_id=new_id)
