#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
testbed/engine.py — SimPy reference engine that hosts the tick broker.

Only what the broker needs is modelled: a job waits until an agent binds it,
is held back by its submission delay (the upstream transfer), queues for one
of the resource's processing elements, runs for length / mips seconds and
finishes. Clock listeners fire every ``clock_step_s`` simulated seconds, so a
tick of 1 s sees several callbacks.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

import simpy

from .models import FINISHED, RUNNING, WAITING, Job, Resource

ClockListener = Callable[[float], None]


class SimEngine:
    """Discrete-event engine exposing the view the broker reads and writes."""

    def __init__(
        self,
        resources: List[Resource],
        clock_step_s: float = 0.25,
        verbose: bool = False,
    ):
        self.env = simpy.Environment()
        self.clock_step_s = max(1e-6, float(clock_step_s))
        self.verbose = verbose

        self._resources: List[Resource] = list(resources)
        self._by_id: Dict[str, Resource] = {str(r.resource_id): r for r in self._resources}
        self._slots: Dict[str, simpy.Resource] = {
            str(r.resource_id): simpy.Resource(self.env, capacity=max(1, int(r.pes)))
            for r in self._resources
        }

        self._waiting: List[Job] = []
        self._running: Dict[str, Job] = {}
        self._finished: List[Job] = []
        self._listeners: List[ClockListener] = []
        self._stop_callbacks: List[Callable[[], None]] = []

        self._stopped = False
        self._done: Optional[simpy.Event] = None

    # -------- read side --------

    @property
    def now(self) -> float:
        return float(self.env.now)

    def resources(self) -> List[Resource]:
        return list(self._resources)

    def find_resource(self, resource_id) -> Optional[Resource]:
        return self._by_id.get(str(resource_id))

    def waiting_jobs(self) -> List[Job]:
        return list(self._waiting)

    def running_jobs(self) -> List[Job]:
        """Submitted and not yet finished, including jobs still in transfer."""
        return list(self._running.values())

    def finished_jobs(self) -> List[Job]:
        return list(self._finished)

    def cpu_utilization(self, resource: Resource) -> Optional[float]:
        """Busy processing elements / total; None for a resource this engine does not own."""
        slots = self._slots.get(str(resource.resource_id))
        if slots is None:
            return None
        return slots.count / slots.capacity

    # -------- write side --------

    def add_job(self, job: Job) -> None:
        """Accept a new job; unbound jobs wait for an agent decision."""
        job.arrival_time = self.now
        if job.resource_id is not None and self.find_resource(job.resource_id) is not None:
            self.submit(job)
            return
        job.resource_id = None
        job.phase = WAITING
        self._waiting.append(job)

    def bind(self, job: Job, resource: Resource) -> None:
        job.resource_id = resource.resource_id

    def submit(self, job: Job) -> None:
        resource = self.find_resource(job.resource_id) if job.resource_id is not None else None
        if resource is None:
            raise ValueError(f"Job {job.job_id} is not bound to a known resource")
        self._waiting = [j for j in self._waiting if j is not job]
        job.phase = RUNNING
        job.submit_time = self.now
        self._running[str(job.job_id)] = job
        self.env.process(self._execute(job, resource))

    def _execute(self, job: Job, resource: Resource):
        if job.submission_delay > 0:
            yield self.env.timeout(job.submission_delay)

        with self._slots[str(resource.resource_id)].request() as req:
            yield req
            job.start_time = self.now
            yield self.env.timeout(job.length / max(resource.mips, 1e-9))

        job.finish_time = self.now
        job.phase = FINISHED
        self._running.pop(str(job.job_id), None)
        self._finished.append(job)
        if self.verbose:
            print(f"[engine] job {job.job_id} finished on {resource.resource_id} at {self.now:.3f}")

    # -------- clock --------

    def add_clock_listener(self, listener: ClockListener) -> None:
        self._listeners.append(listener)

    def on_stop(self, callback: Callable[[], None]) -> None:
        self._stop_callbacks.append(callback)

    def _clock(self):
        while True:
            if self._stopped:
                self._finish()
                return
            for listener in list(self._listeners):
                listener(self.now)
                if self._stopped:
                    break
            yield self.env.timeout(self.clock_step_s)

    def _deadline(self, until: float):
        yield self.env.timeout(until)
        self._finish()

    def _finish(self) -> None:
        if self._done is not None and not self._done.triggered:
            self._done.succeed()

    def stop(self) -> None:
        """Request termination; safe to call from a listener or a signal handler."""
        self._stopped = True
        for cb in list(self._stop_callbacks):
            cb()

    @property
    def stopped(self) -> bool:
        return self._stopped

    def run(self, until: float) -> float:
        """Run until the simulated deadline or stop(); returns the final clock."""
        self._done = self.env.event()
        self.env.process(self._clock())
        self.env.process(self._deadline(float(until)))
        self.env.run(until=self._done)
        return self.now
