#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
testbed/models.py — Job and resource records shared by the engine and the broker.

Payload sizes are bytes, lengths are MI, speeds are MIPS.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

WAITING = "WAITING"
RUNNING = "RUNNING"
FINISHED = "FINISHED"


@dataclass
class Resource:
    """A compute unit (VM) owned by the engine."""

    resource_id: int
    node_id: str  # transfer destination in the network profile
    mips: float = 1000.0
    pes: int = 1
    ram: float = 0.0
    bw: float = 0.0
    size: float = 0.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Resource":
        rid = d["id"]
        return cls(
            resource_id=rid,
            node_id=str(d.get("node_id", rid)),
            mips=float(d.get("mips", 1000.0)),
            pes=int(d.get("pes", 1)),
            ram=float(d.get("ram", 0.0)),
            bw=float(d.get("bw", 0.0)),
            size=float(d.get("size", 0.0)),
        )


@dataclass
class Job:
    """A unit of work. Payload sizes are bytes; length is in MI."""

    job_id: int
    length: float
    input_bytes: int
    output_bytes: int
    src_node: str
    stream: str = ""
    resource_id: Optional[int] = None
    submission_delay: float = 0.0
    phase: str = WAITING

    # Filled by the engine
    arrival_time: float = 0.0
    submit_time: Optional[float] = None
    start_time: Optional[float] = None
    finish_time: Optional[float] = None

    @property
    def bound(self) -> bool:
        return self.resource_id is not None

    @property
    def turnaround(self) -> Optional[float]:
        if self.finish_time is None:
            return None
        return self.finish_time - self.arrival_time
