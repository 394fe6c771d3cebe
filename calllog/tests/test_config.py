# calllog/tests/test_config.py
import threading

import pytest
from pydantic import ValidationError

from calllog.config import ConfigHandle, GlobalConfig, as_config_handle, load_config


def test_defaults():
    cfg = load_config()
    assert cfg.enabled is True
    assert cfg.masking.mask_value == "****"
    assert cfg.masking.enabled is True
    assert cfg.header.enabled is False
    assert cfg.max_response_body_size == 4096
    assert cfg.max_depth == 10
    assert cfg.config_origin == "defaults"


def test_yaml_overlay_with_camel_case(tmp_path, monkeypatch):
    p = tmp_path / "calllog.yaml"
    p.write_text(
        "calllog:\n"
        "  maxResponseBodySize: 128\n"
        "  masking:\n"
        "    maskFields: [password, ssn]\n"
        "  header:\n"
        "    include-all: true\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("CALLLOG_CONFIG_PATH", str(p))
    cfg = load_config()
    assert cfg.max_response_body_size == 128
    assert cfg.masking.mask_fields == ("password", "ssn")
    assert cfg.header.include_all is True
    assert cfg.config_origin == "yaml"


def test_env_overrides_yaml(tmp_path, monkeypatch):
    p = tmp_path / "calllog.yaml"
    p.write_text("enabled: true\nexcluded_classes: [a.B]\n", encoding="utf-8")
    monkeypatch.setenv("CALLLOG_CONFIG_PATH", str(p))
    monkeypatch.setenv("CALLLOG_ENABLED", "false")
    monkeypatch.setenv("CALLLOG_MASK_FIELDS", "password, token ,")
    monkeypatch.setenv("CALLLOG_EXCLUDE_PATTERNS", "/health,/metrics")
    cfg = load_config()
    assert cfg.enabled is False
    assert cfg.excluded_classes == ("a.B",)
    assert cfg.masking.mask_fields == ("password", "token")
    assert cfg.exclude_patterns == ("/health", "/metrics")


def test_malformed_yaml_is_ignored(tmp_path, monkeypatch):
    p = tmp_path / "bad.yaml"
    p.write_text("enabled: [unclosed\n", encoding="utf-8")
    monkeypatch.setenv("CALLLOG_CONFIG_PATH", str(p))
    assert load_config().config_origin == "defaults"


def test_unknown_yaml_key_is_rejected(tmp_path, monkeypatch):
    p = tmp_path / "typo.yaml"
    p.write_text("enabeld: true\n", encoding="utf-8")
    monkeypatch.setenv("CALLLOG_CONFIG_PATH", str(p))
    with pytest.raises(ValidationError):
        load_config()


def test_snapshot_is_frozen():
    cfg = GlobalConfig()
    with pytest.raises(ValidationError):
        cfg.enabled = False


def test_empty_mask_value_rejected():
    with pytest.raises(ValidationError):
        GlobalConfig(masking={"mask_value": ""})


def test_swap_replaces_reference():
    handle = ConfigHandle(GlobalConfig())
    before = handle.get()
    old = handle.swap(GlobalConfig(enabled=False))
    assert old is before
    assert handle.get().enabled is False
    assert before.enabled is True


def test_swap_rejects_other_types():
    handle = ConfigHandle(GlobalConfig())
    with pytest.raises(TypeError):
        handle.swap({"enabled": False})


def test_update_merges_nested_keys():
    handle = ConfigHandle(GlobalConfig(masking={"mask_fields": ("password",)}))
    updated = handle.update(masking={"maskValue": "###"})
    assert updated.masking.mask_value == "###"
    assert updated.masking.mask_fields == ("password",)
    assert updated.config_origin == "runtime"
    assert handle.get() is updated


def test_invalid_update_keeps_current():
    handle = ConfigHandle(GlobalConfig())
    current = handle.get()
    with pytest.raises(ValidationError):
        handle.update(max_depth=0)
    assert handle.get() is current


def test_concurrent_readers_see_whole_snapshots():
    a = GlobalConfig(enabled=True, max_depth=3)
    b = GlobalConfig(enabled=False, max_depth=7)
    handle = ConfigHandle(a)
    seen = set()
    stop = threading.Event()

    def reader():
        while not stop.is_set():
            cfg = handle.get()
            seen.add((cfg.enabled, cfg.max_depth))

    threads = [threading.Thread(target=reader) for _ in range(4)]
    for t in threads:
        t.start()
    for i in range(200):
        handle.swap(b if i % 2 == 0 else a)
    stop.set()
    for t in threads:
        t.join()
    assert seen <= {(True, 3), (False, 7)}


def test_as_config_handle():
    handle = ConfigHandle(GlobalConfig())
    assert as_config_handle(handle) is handle
    assert as_config_handle(GlobalConfig(enabled=False)).get().enabled is False
    with pytest.raises(TypeError):
        as_config_handle("nope")
