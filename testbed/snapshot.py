#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
testbed/snapshot.py — Per-tick state payload handed to the agent.

Shape
-----
{
  "tick": int,
  "time": float,
  "resources": [
     {"id", "node_id", "mips", "pes", "ram", "bw", "size", "cpu_util", "energy_joules"}
  ],
  "jobs": [
     {"id", "length", "input_bytes", "output_bytes", "resource" (id | null),
      "src_node", "phase": "WAITING"|"RUNNING"}
  ],
  "cumulative_network_energy_joules": float
}

Jobs are listed WAITING first, then RUNNING, each in engine order.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List

from .context import RunContext
from .links import clamp
from .models import RUNNING, WAITING


def utilization(engine, resource) -> float:
    """
    Engine-reported utilization when it is a finite number in [0, 1]; otherwise
    running jobs on the resource / max(1, pes), clamped to [0, 1].
    """
    try:
        u = engine.cpu_utilization(resource)
    except (AttributeError, TypeError, ValueError):
        u = None
    if isinstance(u, (int, float)) and not isinstance(u, bool) and math.isfinite(u) and 0.0 <= u <= 1.0:
        return float(u)
    rid = str(resource.resource_id)
    running = sum(1 for j in engine.running_jobs() if j.resource_id is not None and str(j.resource_id) == rid)
    return clamp(running / max(1.0, float(resource.pes)), 0.0, 1.0)


class StateSnapshotBuilder:
    def __init__(self, ctx: RunContext, engine):
        self.ctx = ctx
        self.engine = engine

    def _resource_view(self, r) -> Dict[str, Any]:
        return {
            "id": r.resource_id,
            "node_id": r.node_id,
            "mips": r.mips,
            "pes": r.pes,
            "ram": r.ram,
            "bw": r.bw,
            "size": r.size,
            "cpu_util": utilization(self.engine, r),
            "energy_joules": self.ctx.ledger.compute_joules(r.resource_id),
        }

    @staticmethod
    def _job_view(j, phase: str) -> Dict[str, Any]:
        return {
            "id": j.job_id,
            "length": j.length,
            "input_bytes": j.input_bytes,
            "output_bytes": j.output_bytes,
            "resource": j.resource_id,
            "src_node": j.src_node,
            "phase": phase,
        }

    def build(self, tick: int, time: float) -> Dict[str, Any]:
        jobs: List[Dict[str, Any]] = [self._job_view(j, WAITING) for j in self.engine.waiting_jobs()]
        jobs += [self._job_view(j, RUNNING) for j in self.engine.running_jobs()]
        return {
            "tick": int(tick),
            "time": float(time),
            "resources": [self._resource_view(r) for r in self.engine.resources()],
            "jobs": jobs,
            "cumulative_network_energy_joules": self.ctx.ledger.network_joules,
        }
