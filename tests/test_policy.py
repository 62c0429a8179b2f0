import json
import threading

import pytest

from hikup.policy import (
    ConfigError,
    MalformedConfig,
    PolicyConfig,
    PolicyStore,
    UnsupportedFormat,
    parse_policy_file,
)


def _write(tmp_path, name, text):
    p = tmp_path / name
    p.write_text(text, encoding="utf-8")
    return str(p)


def test_store_starts_empty():
    policy = PolicyStore().snapshot()
    assert policy.include_containers == ()
    assert policy.exclude_containers == ()
    assert policy.is_empty


def test_load_json(tmp_path):
    path = _write(tmp_path, "policy.json", json.dumps({"include_containers": ["*"], "exclude_containers": ["cache"]}))
    store = PolicyStore()
    store.load(path)
    assert store.snapshot() == PolicyConfig(include_containers=("*",), exclude_containers=("cache",))


@pytest.mark.parametrize("ext", [".yaml", ".yml", ".YAML"])
def test_load_yaml_extensions(tmp_path, ext):
    path = _write(tmp_path, f"policy{ext}", "include_containers:\n  - web\nexclude_containers: []\n")
    store = PolicyStore()
    store.load(path)
    assert store.snapshot().include_containers == ("web",)
    assert store.snapshot().exclude_containers == ()


def test_empty_yaml_and_null_lists_are_empty_policy(tmp_path):
    assert parse_policy_file(_write(tmp_path, "empty.yaml", "")).is_empty
    assert parse_policy_file(_write(tmp_path, "nulls.yml", "include_containers:\nexclude_containers: null\n")).is_empty


def test_unknown_keys_are_ignored(tmp_path):
    path = _write(tmp_path, "p.json", '{"include_containers": ["web"], "comment": "hello"}')
    assert parse_policy_file(path).include_containers == ("web",)


def test_unsupported_extension(tmp_path):
    path = _write(tmp_path, "policy.toml", "include_containers = ['web']")
    with pytest.raises(UnsupportedFormat):
        PolicyStore().load(path)


def test_missing_file_is_config_error(tmp_path):
    with pytest.raises(ConfigError) as exc:
        PolicyStore().load(str(tmp_path / "nope.json"))
    assert not isinstance(exc.value, (UnsupportedFormat, MalformedConfig))


@pytest.mark.parametrize(
    "name,text",
    [
        ("bad.json", "{not json"),
        ("bad.yaml", "include_containers: [web\n"),
        ("list.json", '["web"]'),
        ("types.json", '{"include_containers": [1, 2]}'),
        ("scalar.yaml", "include_containers: web\n"),
    ],
)
def test_failed_reload_keeps_previous_snapshot(tmp_path, name, text):
    store = PolicyStore()
    store.load(_write(tmp_path, "good.json", '{"include_containers": ["web"], "exclude_containers": ["db"]}'))
    before = store.snapshot()
    dumped = before.model_dump_json()

    with pytest.raises(MalformedConfig):
        store.load(_write(tmp_path, name, text))

    assert store.snapshot() is before
    assert store.snapshot().model_dump_json() == dumped


def test_policy_is_immutable():
    policy = PolicyConfig(include_containers=["web"])
    with pytest.raises(Exception):
        policy.include_containers = ("db",)


def test_concurrent_readers_never_see_mixed_policy():
    old = PolicyConfig(include_containers=("old-in",), exclude_containers=("old-ex",))
    new = PolicyConfig(include_containers=("new-in",), exclude_containers=("new-ex",))
    store = PolicyStore(old)
    stop = threading.Event()
    torn = []

    def reader():
        while not stop.is_set():
            p = store.snapshot()
            pair = (p.include_containers[0][:3], p.exclude_containers[0][:3])
            if pair[0] != pair[1]:
                torn.append(pair)

    readers = [threading.Thread(target=reader) for _ in range(4)]
    for t in readers:
        t.start()
    for i in range(500):
        store.replace(new if i % 2 == 0 else old)
    stop.set()
    for t in readers:
        t.join()

    assert torn == []
