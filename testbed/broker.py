#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
testbed/broker.py — Tick loop between the simulation engine and the agent.

Per distinct tick k = floor(time / tick_seconds):
  1. accumulate compute energy for every resource (left Riemann, one tick)
  2. charge downstream energy for jobs that finished since the last tick
  3. build the state snapshot and publish it           (EXPORT)
  4. wait for the agent's decision for k, bounded      (AWAIT → RECEIVED | TIMEOUT)
  5. apply assignments, then link patches              (APPLIED)

Clock callbacks for a tick that was already processed (or an earlier one) are
ignored. Only a failed publish (BridgeWriteError) escapes on_clock().

Engine view expected (duck-typed)
---------------------------------
engine.now                       float
engine.resources()               [Resource]      .resource_id .node_id .pes ...
engine.waiting_jobs()            [Job]           unbound, not submitted
engine.running_jobs()            [Job]           submitted, not finished
engine.finished_jobs()           [Job]
engine.cpu_utilization(r)        float | None
engine.bind(job, r); engine.submit(job)
engine.add_clock_listener(fn)
"""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional

from .assign import AssignmentApplier
from .channel import Decision
from .context import RunContext
from .patches import LinkPatchApplier
from .snapshot import StateSnapshotBuilder, utilization

# most recent ticks kept in BrokerStats.history
HISTORY_LIMIT = 1000


@dataclass
class TickRecord:
    tick: int
    time: float
    received: bool
    assignments_applied: int
    patches_applied: int


@dataclass
class BrokerStats:
    ticks: int = 0
    decisions_received: int = 0
    timeouts: int = 0
    assignments_applied: int = 0
    patches_applied: int = 0
    history: Deque[TickRecord] = field(default_factory=lambda: deque(maxlen=HISTORY_LIMIT))


class TickBroker:
    def __init__(self, ctx: RunContext, engine, channel, verbose: bool = False,
                 keep_history: bool = True, history_limit: int = HISTORY_LIMIT):
        self.ctx = ctx
        self.engine = engine
        self.channel = channel
        self.verbose = verbose
        self.keep_history = keep_history

        self.snapshots = StateSnapshotBuilder(ctx, engine)
        self.assigner = AssignmentApplier(ctx, engine, verbose=verbose)
        self.patcher = LinkPatchApplier(ctx.profile, verbose=verbose)

        self.last_tick: int = -1
        self.stats = BrokerStats(history=deque(maxlen=max(1, int(history_limit))))

    def log(self, msg: str):
        if self.verbose:
            print(f"[broker] {msg}")

    def attach(self) -> "TickBroker":
        self.engine.add_clock_listener(self.on_clock)
        return self

    def tick_of(self, time: float) -> int:
        return int(math.floor(float(time) / self.ctx.tick_seconds))

    def on_clock(self, time: float) -> Optional[Decision]:
        """Engine clock callback. Returns the decision applied, or None for a no-op."""
        if not math.isfinite(time) or time < 0:
            return None
        k = self.tick_of(time)
        if k <= self.last_tick:
            return None
        self.last_tick = k

        self.ctx.ledger.accumulate(
            self.engine.resources(),
            lambda r: utilization(self.engine, r),
            self.ctx.tick_seconds,
        )
        self.assigner.account_finished(self.engine.finished_jobs())

        state = self.snapshots.build(k, time)
        self.channel.publish(k, state)

        decision = self.channel.await_decision(k, self.ctx.wait_timeout_s)
        applied = self.assigner.apply(decision.assignments, time)
        patched = self.patcher.apply(decision.link_patches)

        self._record(k, time, decision, len(applied), patched)
        return decision

    def _record(self, k: int, time: float, decision: Decision, applied: int, patched: int) -> None:
        s = self.stats
        s.ticks += 1
        if decision.received:
            s.decisions_received += 1
        else:
            s.timeouts += 1
        s.assignments_applied += applied
        s.patches_applied += patched
        if self.keep_history:
            s.history.append(TickRecord(k, time, decision.received, applied, patched))
        self.log(f"tick {k} t={time:.3f} decision={'yes' if decision.received else 'timeout'} "
                 f"assigned={applied} patched={patched}")

    def summary(self) -> Dict[str, Any]:
        s = self.stats
        return {
            "ticks": s.ticks,
            "decisions_received": s.decisions_received,
            "timeouts": s.timeouts,
            "assignments_applied": s.assignments_applied,
            "patches_applied": s.patches_applied,
            "rejected_unreachable": self.assigner.rejected_unreachable,
            "skipped_unresolved": self.assigner.skipped_unresolved,
            "energy": self.ctx.ledger.as_dict(),
        }
