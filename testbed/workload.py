#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
testbed/workload.py — Poisson job arrivals driven by the engine clock.

Each stream has its own arrival rate (jobs per simulated second), source
node, length range and payload sizes. All streams share one seeded RNG so a
run is reproducible.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .models import Job


@dataclass
class Stream:
    name: str
    rate: float
    src_node: str
    length_min: int = 20000
    length_max: int = 30000
    input_bytes: int = 1024 * 1024
    output_bytes: int = 1024 * 1024
    next_at: float = 0.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Stream":
        return cls(
            name=str(d.get("name", "stream")),
            rate=float(d.get("rate", 0.0)),
            src_node=str(d.get("src_node", "0")),
            length_min=int(d.get("length_min", 20000)),
            length_max=int(d.get("length_max", d.get("length_min", 30000))),
            input_bytes=int(d.get("input_bytes", 1024 * 1024)),
            output_bytes=int(d.get("output_bytes", 1024 * 1024)),
        )


class PoissonWorkload:
    """Submits jobs to the engine from its clock listener."""

    def __init__(self, engine, streams: List[Stream], seed: int = 42,
                 bind_round_robin: bool = False, limit: Optional[int] = None):
        self.engine = engine
        self.streams = streams
        self.rng = random.Random(seed)
        self.bind_round_robin = bind_round_robin
        self.limit = limit
        self._seq = 0
        self._rr = 0

    @classmethod
    def from_config(cls, engine, cfg: Dict[str, Any]) -> "PoissonWorkload":
        wl = cfg.get("workload") or {}
        streams = [Stream.from_dict(s) for s in (wl.get("streams") or [])]
        return cls(
            engine,
            streams,
            seed=int(wl.get("seed", 42)),
            bind_round_robin=bool(wl.get("bind_round_robin", False)),
            limit=wl.get("limit"),
        )

    def attach(self) -> "PoissonWorkload":
        self.engine.add_clock_listener(self.on_clock)
        return self

    def _interarrival(self, rate: float) -> float:
        return -math.log(1.0 - self.rng.random()) / rate

    def on_clock(self, time: float) -> None:
        for s in self.streams:
            while s.rate > 0 and time >= s.next_at:
                if self.limit is not None and self._seq >= self.limit:
                    return
                self._submit_one(s)
                s.next_at = time + self._interarrival(s.rate)

    def _submit_one(self, s: Stream) -> Job:
        self._seq += 1
        job = Job(
            job_id=self._seq,
            length=float(self.rng.randint(s.length_min, max(s.length_min, s.length_max))),
            input_bytes=s.input_bytes,
            output_bytes=s.output_bytes,
            src_node=s.src_node,
            stream=s.name,
        )
        resources = self.engine.resources()
        if self.bind_round_robin and resources:
            job.resource_id = resources[self._rr % len(resources)].resource_id
            self._rr += 1
        self.engine.add_job(job)
        return job

    @property
    def submitted(self) -> int:
        return self._seq
