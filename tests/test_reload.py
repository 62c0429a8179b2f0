import os
import signal
import time

import pytest

from hikup import db
from hikup.policy import PolicyConfig, PolicyStore
from hikup.reload import ReloadWatcher


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_reload_now_swaps_policy(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text("include_containers: ['*']\nexclude_containers: [cache]\n")
    store = PolicyStore()

    assert ReloadWatcher(store, str(path)).reload_now() is True
    assert store.snapshot() == PolicyConfig(include_containers=("*",), exclude_containers=("cache",))
    assert any("reloaded" in e["message"] for e in db.latest_events(5))


def test_failed_reload_is_logged_not_raised(tmp_path, caplog):
    path = tmp_path / "policy.json"
    path.write_text("{broken")
    before = PolicyConfig(include_containers=("web",))
    store = PolicyStore(before)
    watcher = ReloadWatcher(store, str(path))

    assert watcher.reload_now() is False
    assert store.snapshot() is before
    assert watcher.failures == 1
    assert "Error reloading config" in caplog.text
    assert any(e["level"] == "ERROR" for e in db.latest_events(5))


def test_reload_without_path_is_a_warning():
    store = PolicyStore()
    assert ReloadWatcher(store, None).reload_now() is False
    assert store.snapshot().is_empty


def test_trigger_reloads_on_watcher_thread(tmp_path):
    path = tmp_path / "policy.json"
    path.write_text('{"include_containers": ["web"]}')
    store = PolicyStore()
    watcher = ReloadWatcher(store, str(path))
    watcher.start()
    try:
        watcher.trigger()
        assert _wait_for(lambda: store.snapshot().include_containers == ("web",))

        path.write_text('{"include_containers": ["db"]}')
        watcher.trigger()
        assert _wait_for(lambda: store.snapshot().include_containers == ("db",))
        assert watcher.reloads == 2
    finally:
        watcher.stop()
        watcher.join(2)


@pytest.mark.skipif(not hasattr(signal, "SIGHUP"), reason="POSIX signals only")
def test_sighup_triggers_reload(tmp_path):
    path = tmp_path / "policy.yml"
    path.write_text("include_containers: [api]\n")
    store = PolicyStore()
    watcher = ReloadWatcher(store, str(path))
    previous = signal.getsignal(signal.SIGHUP)
    try:
        watcher.install()
        watcher.start()
        os.kill(os.getpid(), signal.SIGHUP)
        assert _wait_for(lambda: store.snapshot().include_containers == ("api",))
    finally:
        signal.signal(signal.SIGHUP, previous)
        watcher.stop()
        watcher.join(2)
