# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/core/config.py
"""
Operator configuration.

Sources, lowest to highest precedence:
  1. dataclass defaults
  2. YAML files (--config, repeatable; later files override earlier ones)
  3. VMOP_* environment variables
  4. explicit overrides (CLI flags)
"""
from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

import yaml

from .admission import max_deploy_threads
from .exceptions import Fatal, wrap_fatal

ENV_PREFIX = "VMOP_"

_TRUE = ("1", "true", "yes", "y", "on")


def _boolish(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    return str(v or "").strip().lower() in _TRUE


@dataclass
class OperatorConfig:
    # vCenter
    vc_host: str = ""
    vc_port: int = 443
    vc_user: str = ""
    vc_password: str = ""
    vc_password_env: Optional[str] = None
    vc_insecure: bool = False
    vc_timeout_s: Optional[float] = None
    datacenter: str = ""
    datastore: str = ""
    storage_class_required: bool = True

    # control plane
    kubeconfig: Optional[str] = None
    in_cluster: bool = False
    watch_namespace: str = ""

    # concurrency
    max_concurrent_reconciles: int = 10
    max_create_vms_on_provider: int = 80

    # feature switches
    instance_storage_enabled: bool = False
    vm_class_as_config_enabled: bool = False
    global_extra_config: Dict[str, str] = field(default_factory=dict)

    # task waits
    task_poll_interval_s: float = 1.0
    task_timeout_s: Optional[float] = None

    # scheduler requeue
    requeue_base_backoff_s: float = 1.0
    requeue_max_backoff_s: float = 300.0
    requeue_jitter_s: float = 0.5
    not_ready_requeue_s: float = 10.0

    @property
    def max_deploy_threads(self) -> int:
        return max_deploy_threads(self.max_concurrent_reconciles, self.max_create_vms_on_provider)

    def resolved_vc_password(self) -> str:
        if self.vc_password:
            return self.vc_password
        if self.vc_password_env:
            return os.environ.get(self.vc_password_env, "")
        return ""

    def has_vc_creds(self) -> bool:
        return bool(self.vc_host and self.vc_user and self.resolved_vc_password())

    def to_dict(self, *, redact: bool = True) -> Dict[str, Any]:
        d = dataclasses.asdict(self)
        if redact and d.get("vc_password"):
            d["vc_password"] = "***REDACTED***"
        return d


_FIELDS = {f.name: f for f in dataclasses.fields(OperatorConfig)}


def _coerce(name: str, value: Any) -> Any:
    current = getattr(OperatorConfig(), name)
    if value is None:
        return None
    if isinstance(current, bool):
        return _boolish(value)
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float) or name in ("vc_timeout_s", "task_timeout_s"):
        return float(value)
    if isinstance(current, dict):
        if not isinstance(value, Mapping):
            raise Fatal(2, f"Config key {name!r} must be a mapping")
        return {str(k): str(v) for k, v in value.items()}
    return str(value)


def load_yaml_file(path: Path) -> Dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise wrap_fatal(f"Config file not found: {path}", e, code=2, path=str(path))
    except yaml.YAMLError as e:
        raise wrap_fatal(f"Invalid YAML in {path}: {e}", e, code=2, path=str(path))
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise Fatal(2, f"Config file {path} must contain a mapping at top level")
    return raw


def load_config(
    paths: Sequence[str] = (),
    *,
    env: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> OperatorConfig:
    merged: Dict[str, Any] = {}

    for p in paths:
        data = load_yaml_file(Path(p).expanduser())
        unknown = sorted(k for k in data if k not in _FIELDS)
        if unknown and logger is not None:
            logger.warning("Ignoring unknown config keys in %s: %s", p, ", ".join(unknown))
        merged.update({k: v for k, v in data.items() if k in _FIELDS})

    env = os.environ if env is None else env
    for name in _FIELDS:
        key = ENV_PREFIX + name.upper()
        if key in env and name != "global_extra_config":
            merged[name] = env[key]

    for k, v in (overrides or {}).items():
        if v is not None and k in _FIELDS:
            merged[k] = v

    try:
        values = {k: _coerce(k, v) for k, v in merged.items()}
    except (TypeError, ValueError) as e:
        raise wrap_fatal(f"Invalid configuration value: {e}", e, code=2)

    cfg = OperatorConfig(**values)
    if cfg.max_concurrent_reconciles < 1:
        raise Fatal(2, "max_concurrent_reconciles must be >= 1")
    if cfg.task_poll_interval_s <= 0:
        raise Fatal(2, "task_poll_interval_s must be > 0")
    return cfg
