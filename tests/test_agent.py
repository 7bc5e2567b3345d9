import json
import threading

from agent.greedy_agent import FileBridge, choose_assignments, decide, load_patch_script, run
from testbed.broker import TickBroker
from testbed.channel import FileDecisionChannel
from testbed.config import load_config
from testbed.context import RunContext
from testbed.engine import SimEngine
from testbed.models import FINISHED

from conftest import make_job


def state_with(jobs, util=(0.0, 0.0)):
    return {
        "tick": 3,
        "time": 3.0,
        "resources": [
            {"id": 101, "pes": 2, "cpu_util": util[0]},
            {"id": 201, "pes": 1, "cpu_util": util[1]},
        ],
        "jobs": jobs,
    }


def test_greedy_spreads_waiting_jobs_by_projected_load():
    jobs = [{"id": i, "phase": "WAITING", "resource": None} for i in (1, 2, 3)]
    out = choose_assignments(state_with(jobs))
    # 101 has two PEs so it absorbs two jobs before 201 is cheaper
    assert out == [
        {"job_id": 1, "resource_id": 101},
        {"job_id": 2, "resource_id": 201},
        {"job_id": 3, "resource_id": 101},
    ]


def test_greedy_skips_running_and_counts_them():
    jobs = [
        {"id": 1, "phase": "RUNNING", "resource": 101},
        {"id": 2, "phase": "RUNNING", "resource": 101},
        {"id": 3, "phase": "WAITING", "resource": None},
    ]
    assert choose_assignments(state_with(jobs)) == [{"job_id": 3, "resource_id": 201}]


def test_greedy_without_resources_assigns_nothing():
    assert choose_assignments({"jobs": [{"id": 1, "phase": "WAITING"}]}) == []


def test_decide_attaches_scripted_patches(tmp_path):
    script = tmp_path / "patches.yaml"
    script.write_text("ticks:\n  3:\n    - {src: '1', dst: '101', up: 0}\n  bogus: []\n")
    patches = load_patch_script(str(script))
    assert list(patches) == [3]
    action = decide(state_with([]), patches)
    assert action["tick"] == 3
    assert action["link_patches"] == [{"src": "1", "dst": "101", "up": 0}]


def test_file_bridge_reads_newest_state_and_writes_action(tmp_path):
    (tmp_path / "state_000001.json").write_text(json.dumps({"tick": 1}))
    (tmp_path / "state_000002.json").write_text(json.dumps({"tick": 2}))
    bridge = FileBridge(tmp_path)
    assert bridge.next_state(-1) == {"tick": 2}
    assert bridge.next_state(2) is None
    bridge.send({"tick": 2, "assignments": []})
    assert json.loads((tmp_path / "action_000002.json").read_text())["tick"] == 2


def test_agent_and_testbed_over_file_bridge(tmp_path, resources, fast_link):
    cfg = load_config(tick_seconds=1.0, wait_timeout_s=5.0, poll_interval_s=0.005)
    ctx = RunContext.create(cfg)
    ctx.profile.put("1", "101", 0, fast_link)
    ctx.profile.put("1", "201", 0, fast_link)

    engine = SimEngine(resources, clock_step_s=0.25)
    for i in (1, 2, 3):
        engine.add_job(make_job(i))
    channel = FileDecisionChannel(tmp_path / "bridge", poll_interval_s=0.005)
    broker = TickBroker(ctx, engine, channel).attach()

    agent = threading.Thread(
        target=run,
        args=(FileBridge(tmp_path / "bridge"), {}),
        kwargs={"max_ticks": 4, "idle_exit_s": 10.0},
        daemon=True,
    )
    agent.start()
    engine.run(until=3.5)
    channel.close()
    agent.join(timeout=15)

    s = broker.summary()
    assert s["ticks"] == 4
    assert s["timeouts"] == 0
    assert s["assignments_applied"] == 3
    assert engine.waiting_jobs() == []
    assert len(engine.finished_jobs()) == 3
    assert all(j.phase == FINISHED for j in engine.finished_jobs())
    assert (tmp_path / "bridge" / "action_000003.json").exists()


def test_file_bridge_follows_a_restarted_testbed(tmp_path):
    (tmp_path / "state_000000.json").write_text(json.dumps({"tick": 0, "run": "new"}))
    bridge = FileBridge(tmp_path)
    # last tick handled in the previous run was 59
    assert bridge.next_state(59) == {"tick": 0, "run": "new"}
    assert bridge.next_state(0) is None
