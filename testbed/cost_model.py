#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
testbed/cost_model.py — Transfer-time and transfer-energy estimators.

Public API
----------
cm = TransferCostModel(profile, j_per_bit=5e-9)

s  = cm.duration(src, dst, bits, t, flows=1, direction="up")   # seconds, math.inf if unreachable
s  = cm.up_seconds(src, dst, bits, t, flows=1)
s  = cm.down_seconds(src, dst, bits, t, flows=1)
j  = cm.energy_joules(bits)

Conventions
-----------
- Bandwidth is the link's effective Mbps for the chosen direction, split
  evenly across `flows` concurrent transfers.
- Propagation is half the RTT (one-way).
- An unreachable link is not an error: duration() returns math.inf and the
  caller decides what to do with the assignment.
- Energy is bits × J_PER_BIT, independent of link identity.
"""

from __future__ import annotations

import math
from typing import Any, Dict

from .links import LinkMetrics, NetworkProfile


DEFAULTS = {
    "J_PER_BIT": 5e-9,
}

UP = "up"
DOWN = "down"


def bytes_to_bits(n_bytes: float) -> float:
    return float(n_bytes) * 8.0


class TransferCostModel:
    def __init__(self, profile: NetworkProfile, **cfg):
        self.profile = profile
        self.cfg = {**DEFAULTS, **cfg}

    @property
    def j_per_bit(self) -> float:
        return float(self.cfg["J_PER_BIT"])

    def _eff_mbps(self, m: LinkMetrics, direction: str) -> float:
        return m.eff_down_mbps if direction == DOWN else m.eff_up_mbps

    def duration(
        self,
        src: Any,
        dst: Any,
        bits: float,
        t: float,
        flows: int = 1,
        direction: str = UP,
    ) -> float:
        m = self.profile.query(src, dst, t)
        if not m.available:
            return math.inf
        eff = self._eff_mbps(m, direction)
        if eff <= 0.0:
            return math.inf
        per_flow_bps = eff * 1e6 / max(int(flows), 1)
        return max(0.0, float(bits)) / per_flow_bps + m.rtt_ms / 2000.0

    def up_seconds(self, src: Any, dst: Any, bits: float, t: float, flows: int = 1) -> float:
        return self.duration(src, dst, bits, t, flows, UP)

    def down_seconds(self, src: Any, dst: Any, bits: float, t: float, flows: int = 1) -> float:
        return self.duration(src, dst, bits, t, flows, DOWN)

    def energy_joules(self, bits: float) -> float:
        return max(0.0, float(bits)) * self.j_per_bit

    def describe(self, src: Any, dst: Any, bits: float, t: float, flows: int = 1) -> Dict[str, Any]:
        """Breakdown used by the agent-facing API and debugging prints."""
        m = self.profile.query(src, dst, t)
        secs = self.up_seconds(src, dst, bits, t, flows)
        return {
            "src": str(src),
            "dst": str(dst),
            "bits": bits,
            "flows": max(int(flows), 1),
            "link": m.to_dict(),
            "seconds": secs if math.isfinite(secs) else None,
            "reachable": math.isfinite(secs),
            "energy_j": self.energy_joules(bits),
        }
