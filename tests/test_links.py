import threading

import pytest

from testbed.links import (
    DEFAULT_LINK,
    LinkMetrics,
    NetworkProfile,
    load_profile,
    load_profile_csv,
    load_profile_yaml,
    parse_flag,
)


def lm(rtt, bw=100.0, loss=0.0, up=True):
    return LinkMetrics(rtt_ms=rtt, up_mbps=bw, down_mbps=bw, loss=loss, up=up)


# ----------------------------- LinkMetrics -----------------------------

def test_effective_bandwidth_applies_loss():
    m = LinkMetrics(rtt_ms=10, up_mbps=200, down_mbps=800, loss=0.25, up=True)
    assert m.eff_up_mbps == pytest.approx(150.0)
    assert m.eff_down_mbps == pytest.approx(600.0)


@pytest.mark.parametrize(
    "loss, bw, expected_loss, expected_bw",
    [(-0.3, -50.0, 0.0, 0.0), (1.7, 100.0, 1.0, 100.0), (0.5, 100.0, 0.5, 100.0)],
)
def test_metrics_are_clamped(loss, bw, expected_loss, expected_bw):
    m = LinkMetrics(rtt_ms=5, up_mbps=bw, down_mbps=bw, loss=loss)
    assert m.loss == expected_loss
    assert m.up_mbps == expected_bw and m.down_mbps == expected_bw
    assert m.eff_up_mbps == pytest.approx(expected_bw * (1 - expected_loss))


def test_availability_needs_flag_and_some_bandwidth():
    assert lm(10).available
    assert not lm(10, up=False).available
    assert not lm(10, loss=1.0).available
    assert not LinkMetrics(rtt_ms=1, up_mbps=0, down_mbps=0).available
    assert LinkMetrics(rtt_ms=1, up_mbps=0, down_mbps=5).available


def test_with_helpers_return_new_instances():
    m = lm(10)
    down = m.with_up(False)
    lossy = m.with_loss(0.5)
    assert m.up and not down.up
    assert m.loss == 0.0 and lossy.loss == 0.5
    with pytest.raises(Exception):
        m.loss = 0.3  # frozen


def test_parse_flag_tokens():
    assert parse_flag("0") is False
    assert parse_flag(" FALSE ") is False
    assert parse_flag("1") is True
    assert parse_flag("yes") is True
    assert parse_flag(None) is True
    assert parse_flag(0) is False
    assert parse_flag(False) is False


# ----------------------------- NetworkProfile -----------------------------

@pytest.fixture()
def series_profile():
    p = NetworkProfile()
    p.put("a", "b", 75, lm(75))
    p.put("a", "b", 0, lm(0))
    p.put("a", "b", 60, lm(60))
    return p


@pytest.mark.parametrize("t, expected_rtt", [(65, 60), (10, 0), (-5, 0), (75, 75), (1e9, 75), (60, 60)])
def test_query_resolves_latest_entry_not_after_t(series_profile, t, expected_rtt):
    assert series_profile.query("a", "b", t).rtt_ms == expected_rtt


def test_series_stays_sorted_after_unordered_inserts(series_profile):
    assert [ts for ts, _ in series_profile.timeline("a", "b")] == [0, 60, 75]


def test_unknown_pair_returns_unavailable_default(series_profile):
    m = series_profile.query("b", "a", 10)  # directed: reverse pair is unknown
    assert m is DEFAULT_LINK
    assert not m.available
    assert m.up_mbps == 0 and m.down_mbps == 0


def test_same_instant_insert_is_last_write_wins(series_profile):
    series_profile.put("a", "b", 60, lm(61))
    series_profile.put("a", "b", 60, lm(62))
    assert len(series_profile.timeline("a", "b")) == 3
    assert series_profile.query("a", "b", 65).rtt_ms == 62


def test_override_wins_at_every_time_until_cleared(series_profile):
    series_profile.override("a", "b", lm(999))
    for t in (-5, 0, 65, 80, 1e9):
        assert series_profile.query("a", "b", t).rtt_ms == 999
    assert series_profile.clear_override("a", "b") is True
    assert series_profile.query("a", "b", 65).rtt_ms == 60
    assert series_profile.clear_override("a", "b") is False


def test_override_on_pair_without_series():
    p = NetworkProfile()
    p.override(1, 2, lm(5))
    assert p.query("1", "2", 0).rtt_ms == 5
    assert ("1", "2") in p.pairs()


def test_put_ignores_malformed_input_without_raising():
    p = NetworkProfile()
    p.put("a", "b", "not-a-time", lm(1))
    p.put(None, "b", 0, lm(1))
    p.put("a", "b", 0, {"rtt_ms": 3})
    assert len(p) == 0
    assert p.query("a", "b", 0) is DEFAULT_LINK


def test_concurrent_reads_with_single_writer_see_whole_entries():
    p = NetworkProfile()
    p.put("a", "b", 0, lm(1, bw=1))
    errors = []
    stop = threading.Event()

    def reader():
        while not stop.is_set():
            m = p.query("a", "b", 0)
            # every published entry has rtt == bw
            if m.rtt_ms != m.up_mbps:
                errors.append(m)

    threads = [threading.Thread(target=reader) for _ in range(4)]
    for th in threads:
        th.start()
    for i in range(2, 500):
        p.override("a", "b", lm(i, bw=i))
    stop.set()
    for th in threads:
        th.join()
    assert not errors


def test_snapshot_lists_series_override_and_current(series_profile):
    series_profile.override("a", "b", lm(5))
    snap = series_profile.snapshot(t=65)
    assert len(snap) == 1
    entry = snap[0]
    assert entry["src"] == "a" and entry["dst"] == "b"
    assert [e["t_start"] for e in entry["series"]] == [0, 60, 75]
    assert entry["override"]["rtt_ms"] == 5
    assert entry["current"]["rtt_ms"] == 5


# ----------------------------- loaders -----------------------------

def test_csv_loader_skips_bad_rows_and_keeps_the_rest(tmp_path, capsys):
    csv_file = tmp_path / "links.csv"
    csv_file.write_text(
        "# t_start,src,dst,rtt,up,down,loss,flag\n"
        "0,101,201,25,300,900,0.02,1\n"
        "60,101,201,35,150\n"
        "5,101\n"                              # too few columns
        "abc,101,201,25,300,300,0.1,1\n"       # bad number
        "\n"
        "75,101,201,0,0,0,1.0,0\n"
        "0,201,101,50,100,0.1\n"
    )
    p = load_profile_csv(csv_file)

    assert [ts for ts, _ in p.timeline("101", "201")] == [0, 60, 75]
    first = p.query("101", "201", 10)
    assert (first.up_mbps, first.down_mbps, first.loss, first.up) == (300, 900, 0.02, True)

    five_col = p.query("101", "201", 65)
    assert (five_col.up_mbps, five_col.down_mbps, five_col.loss, five_col.up) == (150, 150, 0.0, True)

    assert not p.query("101", "201", 80).available

    six_col = p.query("201", "101", 0)
    assert (six_col.up_mbps, six_col.down_mbps, six_col.loss, six_col.up) == (100, 100, 0.1, True)

    out = capsys.readouterr().out
    assert out.count("WARN: skip") == 2


def test_yaml_loader_handles_series_and_overrides(tmp_path):
    y = tmp_path / "links.yaml"
    y.write_text(
        "links:\n"
        "  - {src: gs, dst: vm, t_start: 0, rtt_ms: 10, up_mbps: 100, down_mbps: 200, loss: 0.0}\n"
        "  - {src: gs, dst: vm, t_start: 30, rtt_ms: 20, bw_mbps: 50}\n"
        "  - {src: sat, dst: vm, rtt_ms: 40, bw_mbps: 10, up: 0, override: true}\n"
        "  - {dst: vm}\n"
    )
    p = load_profile_yaml(y)
    assert p.query("gs", "vm", 5).down_mbps == 200
    assert p.query("gs", "vm", 31).up_mbps == 50
    assert not p.query("sat", "vm", 0).up


def test_load_profile_dispatches_on_suffix(tmp_path):
    c = tmp_path / "x.csv"
    c.write_text("0,a,b,10,100\n")
    y = tmp_path / "x.yml"
    y.write_text("links:\n  - {src: a, dst: b, rtt_ms: 7, bw_mbps: 1}\n")
    assert load_profile(c).query("a", "b", 0).rtt_ms == 10
    assert load_profile(y).query("a", "b", 0).rtt_ms == 7


def test_loader_extends_existing_profile(tmp_path):
    p = NetworkProfile()
    p.override("x", "y", lm(1))
    c = tmp_path / "x.csv"
    c.write_text("0,a,b,10,100\n")
    assert load_profile_csv(c, p) is p
    assert p.pairs() == [("a", "b"), ("x", "y")]


@pytest.mark.parametrize("t, expected_rtt", [(None, 75), ("65", 60), ("soon", 75), (float("nan"), 75),
                                             (float("-inf"), 0), (float("inf"), 75)])
def test_query_coerces_odd_times_without_raising(series_profile, t, expected_rtt):
    assert series_profile.query("a", "b", t).rtt_ms == expected_rtt
