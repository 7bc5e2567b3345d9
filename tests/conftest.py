import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from testbed.config import load_config
from testbed.context import RunContext
from testbed.links import LinkMetrics
from testbed.models import FINISHED, RUNNING, WAITING, Job, Resource


class StubEngine:
    """Minimal engine view: lists in, bindings and submissions recorded."""

    def __init__(self, resources=None, jobs=None, utilization=None, now=0.0):
        self.now = now
        self._resources = list(resources or [])
        self._jobs = list(jobs or [])
        self.utilization = dict(utilization or {})
        self.listeners = []
        self.submitted = []

    def resources(self):
        return list(self._resources)

    def waiting_jobs(self):
        return [j for j in self._jobs if j.phase == WAITING]

    def running_jobs(self):
        return [j for j in self._jobs if j.phase == RUNNING]

    def finished_jobs(self):
        return [j for j in self._jobs if j.phase == FINISHED]

    def cpu_utilization(self, resource):
        return self.utilization.get(resource.resource_id)

    def bind(self, job, resource):
        job.resource_id = resource.resource_id

    def submit(self, job):
        job.phase = RUNNING
        self.submitted.append(job)

    def add_clock_listener(self, fn):
        self.listeners.append(fn)

    def add(self, job):
        self._jobs.append(job)
        return job


def make_job(job_id, src="1", in_bytes=3_000_000, out_bytes=1_000_000, phase=WAITING, resource=None):
    return Job(
        job_id=job_id,
        length=10_000.0,
        input_bytes=in_bytes,
        output_bytes=out_bytes,
        src_node=src,
        resource_id=resource,
        phase=phase,
    )


@pytest.fixture()
def cfg():
    return load_config(tick_seconds=1.0, wait_timeout_s=0.05, poll_interval_s=0.005)


@pytest.fixture()
def ctx(cfg):
    return RunContext.create(cfg)


@pytest.fixture()
def resources():
    return [
        Resource(resource_id=101, node_id="101", mips=5000, pes=2),
        Resource(resource_id=201, node_id="201", mips=5000, pes=1),
    ]


@pytest.fixture()
def fast_link():
    # 300 Mbps both ways, no loss, 20 ms RTT
    return LinkMetrics(rtt_ms=20.0, up_mbps=300.0, down_mbps=300.0, loss=0.0, up=True)
