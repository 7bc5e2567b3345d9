#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
testbed/assign.py — Apply the agent's job → resource bindings.

For every record the job is looked up among the waiting (unbound) jobs and
the resource among the engine's resources. Unresolvable records are logged
and skipped; the rest of the batch is still applied.

A resolved pair is charged the upstream transfer:
  duration = cost_model.up_seconds(job.src_node, resource.node_id, input_bits, now, flows)
  energy   = input_bits × J_PER_BIT
The job's submission delay is set to that duration, then the job is bound and
submitted. An unreachable link (infinite duration) rejects the record: the job
stays waiting and nothing is charged.

Downstream (output payload) energy is charged once per job id when the engine
reports the job finished.
"""

from __future__ import annotations

import math
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .context import RunContext
from .cost_model import bytes_to_bits


def norm_id(x: Any) -> Optional[str]:
    """Canonical string id: 7, 7.0, "7" and " 7 " all map to "7"."""
    if x is None or isinstance(x, bool):
        return None
    if isinstance(x, float):
        if not math.isfinite(x):
            return None
        return str(int(x)) if x.is_integer() else str(x)
    s = str(x).strip()
    if not s:
        return None
    try:
        f = float(s)
        if math.isfinite(f) and f.is_integer() and "." in s:
            return str(int(f))
    except ValueError:
        pass
    return s


def _ref(rec: Dict[str, Any], *keys: str) -> Optional[str]:
    for k in keys:
        if k in rec:
            return norm_id(rec[k])
    return None


class AssignmentApplier:
    def __init__(self, ctx: RunContext, engine, verbose: bool = False):
        self.ctx = ctx
        self.engine = engine
        self.verbose = verbose
        self._down_accounted: Set[str] = set()
        self.rejected_unreachable = 0
        self.skipped_unresolved = 0

    def log(self, msg: str):
        if self.verbose:
            print(f"[assign] {msg}")

    def _resolve(self, assignments: Iterable[Any]) -> List[Tuple[Any, Any]]:
        waiting = {norm_id(j.job_id): j for j in self.engine.waiting_jobs() if j.resource_id is None}
        resources = {norm_id(r.resource_id): r for r in self.engine.resources()}
        taken: Set[str] = set()
        pairs: List[Tuple[Any, Any]] = []
        for rec in assignments:
            if not isinstance(rec, dict):
                print(f"[assign] WARN: skip non-object assignment: {rec!r}")
                self.skipped_unresolved += 1
                continue
            jid = _ref(rec, "job_id", "cloudlet_id", "id")
            rid = _ref(rec, "resource_id", "vm_id")
            job = waiting.get(jid) if jid is not None else None
            res = resources.get(rid) if rid is not None else None
            if job is None or res is None or jid in taken:
                why = "job not waiting" if job is None else ("duplicate job" if jid in taken else "unknown resource")
                print(f"[assign] WARN: skip {rec!r} ({why})")
                self.skipped_unresolved += 1
                continue
            taken.add(jid)
            pairs.append((job, res))
        return pairs

    def apply(self, assignments: Any, now: float) -> List[Tuple[Any, Any]]:
        """Returns the (job_id, resource_id) pairs that were bound and submitted."""
        if not isinstance(assignments, (list, tuple)) or not assignments:
            return []
        pairs = self._resolve(assignments)
        flows = Counter((str(j.src_node), str(r.node_id)) for j, r in pairs)

        applied: List[Tuple[Any, Any]] = []
        for job, res in pairs:
            bits = bytes_to_bits(job.input_bytes)
            n = flows[(str(job.src_node), str(res.node_id))]
            secs = self.ctx.cost_model.up_seconds(job.src_node, res.node_id, bits, now, flows=n)
            if not math.isfinite(secs):
                print(f"[assign] WARN: link {job.src_node}->{res.node_id} unavailable; "
                      f"job {job.job_id} stays waiting")
                self.rejected_unreachable += 1
                continue

            self.ctx.ledger.add_network(self.ctx.cost_model.energy_joules(bits))
            job.submission_delay = secs
            self.engine.bind(job, res)
            self.engine.submit(job)
            applied.append((job.job_id, res.resource_id))
            self.log(f"job {job.job_id} -> {res.resource_id} delay={secs:.4f}s flows={n}")
        return applied

    def account_finished(self, jobs: Iterable[Any]) -> float:
        """Charge output-payload energy for newly finished bound jobs; returns joules added."""
        added = 0.0
        for j in jobs:
            jid = norm_id(j.job_id)
            if jid is None or j.resource_id is None or jid in self._down_accounted:
                continue
            self._down_accounted.add(jid)
            joules = self.ctx.cost_model.energy_joules(bytes_to_bits(j.output_bytes))
            self.ctx.ledger.add_network(joules)
            added += joules
        return added
