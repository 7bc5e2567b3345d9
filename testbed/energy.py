#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
testbed/energy.py — Cumulative compute and network energy for one run.

Compute power is linear in utilization between P_IDLE_W and P_MAX_W and is
integrated once per tick (left Riemann sum: the utilization read at the tick
boundary is held for the whole tick). Network energy is a single process-wide
total fed by the assignment path.
"""

from __future__ import annotations

import math
import threading
from typing import Any, Callable, Dict, Iterable

from .links import clamp


DEFAULTS = {
    "P_IDLE_W": 10.0,
    "P_MAX_W": 35.0,
}


class EnergyLedger:
    def __init__(self, **cfg):
        self.cfg = {**DEFAULTS, **cfg}
        self._lock = threading.Lock()
        self._compute_j: Dict[str, float] = {}
        self._network_j: float = 0.0

    def power_w(self, utilization: float) -> float:
        u = clamp(utilization, 0.0, 1.0) if math.isfinite(utilization) else 0.0
        idle = float(self.cfg["P_IDLE_W"])
        peak = float(self.cfg["P_MAX_W"])
        return idle + (peak - idle) * u

    def accumulate(
        self,
        resources: Iterable[Any],
        utilization: Callable[[Any], float],
        tick_seconds: float,
    ) -> None:
        """Add power(u) × tick_seconds joules to every resource."""
        dt = max(0.0, float(tick_seconds))
        with self._lock:
            for r in resources:
                rid = str(r.resource_id)
                inc = max(0.0, self.power_w(utilization(r)) * dt)
                self._compute_j[rid] = self._compute_j.get(rid, 0.0) + inc

    def add_network(self, joules: float) -> None:
        if not math.isfinite(joules) or joules <= 0.0:
            return
        with self._lock:
            self._network_j += joules

    def compute_joules(self, resource_id: Any) -> float:
        with self._lock:
            return self._compute_j.get(str(resource_id), 0.0)

    @property
    def network_joules(self) -> float:
        with self._lock:
            return self._network_j

    def as_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "compute_joules": dict(self._compute_j),
                "network_joules": self._network_j,
                "total_joules": sum(self._compute_j.values()) + self._network_j,
            }
