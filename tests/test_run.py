import json

from testbed import run as testbed_run


def test_main_runs_without_an_agent_and_writes_summary(tmp_path, monkeypatch):
    monkeypatch.setattr(testbed_run.signal, "signal", lambda *a, **k: None)
    bridge = tmp_path / "bridge"
    out = tmp_path / "out" / "summary.json"

    summary = testbed_run.main([
        "--bridge", str(bridge),
        "--tick", "1",
        "--wait", "0.01",
        "--until", "2.5",
        "--out", str(out),
    ])

    assert summary["ticks"] == 3
    assert summary["decisions_received"] == 0
    assert summary["timeouts"] == 3
    # nobody assigned anything, so every arrival is still waiting
    assert summary["finished"] == 0 and summary["waiting"] > 0
    assert sorted(p.name for p in bridge.glob("state_*.json")) == [
        "state_000000.json", "state_000001.json", "state_000002.json",
    ]
    saved = json.loads(out.read_text())
    assert saved["summary"]["ticks"] == 3
    assert saved["jobs"] == []


def test_make_channel_picks_transport(tmp_path):
    from testbed.channel import FileDecisionChannel, MemoryDecisionChannel
    from testbed.context import RunContext

    ctx = RunContext.create()
    assert isinstance(testbed_run.make_channel(ctx, "http", None), MemoryDecisionChannel)
    ch = testbed_run.make_channel(ctx, "file", str(tmp_path / "b"))
    assert isinstance(ch, FileDecisionChannel)
    assert (tmp_path / "b" / "tmp").is_dir()
