import pytest

from testbed.config import DEFAULTS, load_config, wait_timeout
from testbed.context import RunContext


def test_defaults_are_not_shared_between_loads():
    a = load_config()
    a["resources"].append({"id": 999})
    assert len(load_config()["resources"]) == len(DEFAULTS["resources"])


def test_yaml_then_overrides(tmp_path):
    y = tmp_path / "cfg.yaml"
    y.write_text("tick_seconds: 2\nwait_fraction: 0.5\np_idle_w: 12\n")
    cfg = load_config(y, wait_fraction=0.25, p_max_w=None)
    assert cfg["tick_seconds"] == 2.0
    assert cfg["wait_fraction"] == 0.25
    assert cfg["p_idle_w"] == 12.0
    assert cfg["p_max_w"] == 35.0


def test_bad_numbers_fall_back_with_warning(capsys):
    cfg = load_config(tick_seconds="soon", j_per_bit=-1, clock_step_s=float("nan"))
    assert cfg["tick_seconds"] == 1.0
    assert cfg["j_per_bit"] == 5e-9
    assert cfg["clock_step_s"] == 0.25
    assert capsys.readouterr().out.count("WARN") == 3


def test_non_mapping_yaml_is_rejected(tmp_path):
    y = tmp_path / "cfg.yaml"
    y.write_text("- just\n- a list\n")
    with pytest.raises(ValueError):
        load_config(y)


def test_wait_budget_defaults_to_fraction_of_tick():
    assert wait_timeout(load_config(tick_seconds=2.0)) == pytest.approx(1.8)
    assert wait_timeout(load_config(tick_seconds=2.0, wait_timeout_s=0.3)) == pytest.approx(0.3)


def test_context_wires_energy_constants(tmp_path):
    prof = tmp_path / "links.csv"
    prof.write_text("0,1,101,20,300\n")
    ctx = RunContext.create(load_config(p_idle_w=5, p_max_w=15, j_per_bit=1e-9, profile_path=str(prof)))
    assert ctx.ledger.power_w(1.0) == 15.0
    assert ctx.cost_model.energy_joules(1e9) == pytest.approx(1.0)
    assert ctx.profile.query("1", "101", 0).rtt_ms == 20


def test_contexts_do_not_share_state():
    a, b = RunContext.create(), RunContext.create()
    a.ledger.add_network(1.0)
    assert b.ledger.network_joules == 0.0
    assert a.profile is not b.profile
