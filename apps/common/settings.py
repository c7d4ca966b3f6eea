# apps/common/settings.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    return data or {}


def _env(key: str) -> Optional[str]:
    v = os.getenv(key)
    return v.strip() if isinstance(v, str) and v.strip() else None


def _as_path(v: str) -> Path:
    return Path(v).expanduser().resolve()


@dataclass(frozen=True)
class AppSettings:
    blob_root: Path
    record_root: Path
    public_base_url: Optional[str]
    preview_max_edge: int
    log_level: str


def load_settings(config_path: Optional[str] = None) -> AppSettings:
    """
    Resolution order (highest -> lowest):
      1) Explicit function argument
      2) KYC_CONFIG_PATH env var
      3) config/app.yaml
    Individual fields can be overridden via env vars:
      - KYC_BLOB_ROOT
      - KYC_RECORD_ROOT
      - KYC_PUBLIC_BASE_URL
      - KYC_PREVIEW_MAX_EDGE
      - KYC_LOG_LEVEL
    """
    cfg_path = (
        Path(config_path)
        if config_path
        else Path(_env("KYC_CONFIG_PATH") or "config/app.yaml")
    )
    cfg = _read_yaml(cfg_path)

    blob_root = _env("KYC_BLOB_ROOT") or cfg.get("blob_root")
    record_root = _env("KYC_RECORD_ROOT") or cfg.get("record_root")
    public_base_url = _env("KYC_PUBLIC_BASE_URL") or cfg.get("public_base_url")
    preview_raw = _env("KYC_PREVIEW_MAX_EDGE") or cfg.get("preview_max_edge", 480)
    log_level = str(_env("KYC_LOG_LEVEL") or cfg.get("log_level") or "INFO").upper()

    problems = []
    if not blob_root:
        problems.append("blob_root / KYC_BLOB_ROOT is missing")
    if not record_root:
        problems.append("record_root / KYC_RECORD_ROOT is missing")

    try:
        preview_max_edge = int(preview_raw)
        if preview_max_edge <= 0:
            raise ValueError
    except (TypeError, ValueError):
        problems.append(f"preview_max_edge / KYC_PREVIEW_MAX_EDGE must be a positive integer, got {preview_raw!r}")
        preview_max_edge = 0

    if not isinstance(logging.getLevelName(log_level), int):
        problems.append(f"log_level / KYC_LOG_LEVEL is not a logging level: {log_level}")

    if problems:
        raise ValueError(
            "Invalid configuration: " + "; ".join(problems) +
            f". Config file used: {cfg_path}"
        )

    return AppSettings(
        blob_root=_as_path(str(blob_root)),
        record_root=_as_path(str(record_root)),
        public_base_url=str(public_base_url) if public_base_url else None,
        preview_max_edge=preview_max_edge,
        log_level=log_level,
    )
