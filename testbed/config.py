#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
testbed/config.py — Run configuration for the scheduling testbed.

Layering (later wins):
  DEFAULTS  →  YAML file (optional)  →  keyword overrides (CLI flags)

Numeric keys that fail to parse fall back to their default with a WARN, the
same way node/link YAML fields are read elsewhere in the testbed.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .links import safe_float


DEFAULTS: Dict[str, Any] = {
    # Tick protocol
    "tick_seconds": 1.0,           # simulated seconds per tick
    "wait_fraction": 0.9,          # AWAIT budget as a fraction of the tick (wall clock)
    "wait_timeout_s": None,        # explicit AWAIT budget; None → wait_fraction * tick_seconds
    "poll_interval_s": 0.01,       # decision polling quantum
    "bridge_dir": "bridge",

    # Energy model
    "p_idle_w": 10.0,
    "p_max_w": 35.0,
    "j_per_bit": 5e-9,

    # Engine
    "clock_step_s": 0.25,          # engine clock callback period (several per tick)
    "until_s": 60.0,

    # Network profile (CSV or YAML); None → empty profile
    "profile_path": None,

    # Resources exposed to the agent
    "resources": [
        {"id": 101, "node_id": "101", "mips": 5000, "pes": 2, "ram": 4096, "bw": 500000, "size": 10000},
        {"id": 201, "node_id": "201", "mips": 5000, "pes": 1, "ram": 4096, "bw": 500000, "size": 10000},
    ],

    # Poisson workload streams
    "workload": {
        "seed": 42,
        "bind_round_robin": False,
        "streams": [
            {"name": "GS", "rate": 0.5, "src_node": "1", "length_min": 40000, "length_max": 60000,
             "input_bytes": 2 * 1024 * 1024, "output_bytes": 1024 * 1024},
            {"name": "SAT", "rate": 0.3, "src_node": "2", "length_min": 20000, "length_max": 30000,
             "input_bytes": 2 * 1024 * 1024, "output_bytes": 1024 * 1024},
        ],
    },
}

NUMERIC_KEYS = (
    "tick_seconds", "wait_fraction", "poll_interval_s",
    "p_idle_w", "p_max_w", "j_per_bit", "clock_step_s", "until_s",
)


def _coerce(cfg: Dict[str, Any]) -> Dict[str, Any]:
    for k in NUMERIC_KEYS:
        v = safe_float(cfg.get(k), float("nan"))
        if v != v or v < 0:
            print(f"[config] WARN: bad value for {k}={cfg.get(k)!r}; using {DEFAULTS[k]}")
            v = float(DEFAULTS[k])
        cfg[k] = v
    if cfg["tick_seconds"] <= 0:
        print(f"[config] WARN: tick_seconds must be > 0; using {DEFAULTS['tick_seconds']}")
        cfg["tick_seconds"] = float(DEFAULTS["tick_seconds"])
    if cfg.get("wait_timeout_s") is not None:
        cfg["wait_timeout_s"] = max(0.0, safe_float(cfg["wait_timeout_s"], 0.0))
    return cfg


def load_config(path: Optional[Union[str, Path]] = None, **overrides: Any) -> Dict[str, Any]:
    cfg = copy.deepcopy(DEFAULTS)
    if path:
        doc = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        if not isinstance(doc, dict):
            raise ValueError(f"{path}: expected a mapping at top level")
        cfg.update(doc)
    cfg.update({k: v for k, v in overrides.items() if v is not None})
    return _coerce(cfg)


def wait_timeout(cfg: Dict[str, Any]) -> float:
    """AWAIT budget in wall-clock seconds."""
    if cfg.get("wait_timeout_s") is not None:
        return float(cfg["wait_timeout_s"])
    return float(cfg["wait_fraction"]) * float(cfg["tick_seconds"])
