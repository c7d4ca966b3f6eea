from __future__ import annotations

import pytest

from apps.common.settings import load_settings

_ENV_KEYS = (
    "KYC_CONFIG_PATH",
    "KYC_BLOB_ROOT",
    "KYC_RECORD_ROOT",
    "KYC_PUBLIC_BASE_URL",
    "KYC_PREVIEW_MAX_EDGE",
    "KYC_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for k in _ENV_KEYS:
        monkeypatch.delenv(k, raising=False)


def test_load_from_yaml(tmp_path):
    cfg = tmp_path / "app.yaml"
    cfg.write_text(
        "blob_root: blobs\nrecord_root: records\npreview_max_edge: 320\nlog_level: debug\n",
        encoding="utf-8",
    )
    s = load_settings(str(cfg))
    assert s.blob_root.name == "blobs"
    assert s.record_root.name == "records"
    assert s.public_base_url is None
    assert s.preview_max_edge == 320
    assert s.log_level == "DEBUG"


def test_env_overrides_yaml(tmp_path, monkeypatch):
    cfg = tmp_path / "app.yaml"
    cfg.write_text("blob_root: blobs\nrecord_root: records\n", encoding="utf-8")
    monkeypatch.setenv("KYC_CONFIG_PATH", str(cfg))
    monkeypatch.setenv("KYC_BLOB_ROOT", str(tmp_path / "other-blobs"))
    monkeypatch.setenv("KYC_PUBLIC_BASE_URL", "https://cdn.example.test")
    monkeypatch.setenv("KYC_PREVIEW_MAX_EDGE", "128")

    s = load_settings()
    assert s.blob_root == (tmp_path / "other-blobs").resolve()
    assert s.public_base_url == "https://cdn.example.test"
    assert s.preview_max_edge == 128
    assert s.log_level == "INFO"


def test_missing_and_invalid_values_are_all_reported(tmp_path):
    cfg = tmp_path / "app.yaml"
    cfg.write_text("preview_max_edge: -4\nlog_level: LOUD\n", encoding="utf-8")

    with pytest.raises(ValueError) as ei:
        load_settings(str(cfg))
    msg = str(ei.value)
    assert "blob_root" in msg
    assert "record_root" in msg
    assert "preview_max_edge" in msg
    assert "log_level" in msg
    assert str(cfg) in msg
