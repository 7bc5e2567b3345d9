#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
agent/greedy_agent.py — reference decision agent for the testbed.

Usage
-----
# File bridge (same directory as testbed.run --bridge)
python3 -m agent.greedy_agent --bridge bridge

# Remote (testbed.run --transport http)
python3 -m agent.greedy_agent --remote http://127.0.0.1:8080

# Inject link patches at given ticks
python3 -m agent.greedy_agent --bridge bridge --patches configs/patches.yaml

Policy
------
Every WAITING job goes to the resource with the lowest projected load:
  load = cpu_util + (running + assigned_this_tick) / pes
ties broken by resource id. Jobs already bound are left alone.

Patch script (YAML)
-------------------
ticks:
  5:  [ {src: "1", dst: "101", rtt_ms: 80, bw_up_mbps: 50, bw_down_mbps: 50, loss: 0.05} ]
  12: [ {src: "1", dst: "101", up: 0} ]
"""

from __future__ import annotations

import argparse
import json
import os
import re
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import requests
import yaml
from rich.console import Console

console = Console()

STATE_RE = re.compile(r"^state_(\d{6,})\.json$")


def load_yaml(path: Union[str, Path]) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def load_patch_script(path: Optional[str]) -> Dict[int, List[Dict[str, Any]]]:
    if not path:
        return {}
    doc = load_yaml(path) or {}
    ticks = doc.get("ticks") if isinstance(doc, dict) else None
    out: Dict[int, List[Dict[str, Any]]] = {}
    for k, patches in (ticks or {}).items():
        try:
            out[int(k)] = list(patches or [])
        except (TypeError, ValueError):
            console.print(f"WARN: patch script key {k!r} is not a tick; ignored", markup=False)
    return out


# ----------------------------- policy -----------------------------

def choose_assignments(state: Dict[str, Any]) -> List[Dict[str, Any]]:
    resources = state.get("resources") or []
    jobs = state.get("jobs") or []
    if not resources:
        return []

    running: Dict[str, int] = {}
    for j in jobs:
        if j.get("phase") == "RUNNING" and j.get("resource") is not None:
            key = str(j["resource"])
            running[key] = running.get(key, 0) + 1

    extra: Dict[str, int] = {}

    def load(r: Dict[str, Any]) -> Tuple[float, str]:
        rid = str(r.get("id"))
        pes = max(1.0, float(r.get("pes") or 1))
        util = float(r.get("cpu_util") or 0.0)
        return util + (running.get(rid, 0) + extra.get(rid, 0)) / pes, rid

    out: List[Dict[str, Any]] = []
    for j in jobs:
        if j.get("phase") != "WAITING" or j.get("resource") is not None:
            continue
        best = min(resources, key=load)
        rid = str(best.get("id"))
        extra[rid] = extra.get(rid, 0) + 1
        out.append({"job_id": j.get("id"), "resource_id": best.get("id")})
    return out


def decide(state: Dict[str, Any], patch_script: Dict[int, List[Dict[str, Any]]]) -> Dict[str, Any]:
    tick = int(state.get("tick", 0))
    return {
        "tick": tick,
        "assignments": choose_assignments(state),
        "link_patches": patch_script.get(tick, []),
    }


# ----------------------------- transports -----------------------------

class FileBridge:
    def __init__(self, bridge_dir: Union[str, Path]):
        self.dir = Path(bridge_dir)
        self.tmp = self.dir / "agent_tmp"

    def next_state(self, after: int) -> Optional[Dict[str, Any]]:
        """
        Newest state file, if its tick differs from `after`. A newest tick
        below `after` means the testbed restarted on this bridge directory.
        """
        if not self.dir.exists():
            return None
        ticks = []
        for p in self.dir.iterdir():
            m = STATE_RE.match(p.name)
            if m:
                ticks.append(int(m.group(1)))
        if not ticks or max(ticks) == after:
            return None
        path = self.dir / f"state_{max(ticks):06d}.json"
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None

    def send(self, action: Dict[str, Any]) -> bool:
        self.tmp.mkdir(parents=True, exist_ok=True)
        final = self.dir / f"action_{int(action['tick']):06d}.json"
        tmp = self.tmp / (final.name + ".tmp")
        tmp.write_text(json.dumps(action, indent=2), encoding="utf-8")
        os.replace(tmp, final)
        return True


class RemoteBridge:
    def __init__(self, base_url: str, timeout: float = 2.0):
        self.base = base_url.rstrip("/")
        self.timeout = timeout

    def next_state(self, after: int) -> Optional[Dict[str, Any]]:
        try:
            r = requests.get(f"{self.base}/state", timeout=self.timeout)
        except requests.RequestException:
            return None
        if r.status_code != 200:
            return None
        data = (r.json() or {}).get("data") or {}
        tick = int(data.get("tick", -1))
        # a lower tick than the last one handled means the testbed restarted
        return data if tick >= 0 and tick != after else None

    def send(self, action: Dict[str, Any]) -> bool:
        try:
            r = requests.post(f"{self.base}/decision", json=action, timeout=self.timeout)
        except requests.RequestException as e:
            console.print(f"WARN: decision POST failed: {e}", markup=False)
            return False
        return r.status_code == 200


# ----------------------------- loop -----------------------------

def run(bridge, patch_script: Dict[int, List[Dict[str, Any]]], poll_s: float = 0.005,
        max_ticks: Optional[int] = None, idle_exit_s: Optional[float] = None) -> int:
    last = -1
    handled = 0
    idle_since = time.monotonic()
    while max_ticks is None or handled < max_ticks:
        state = bridge.next_state(last)
        if state is None:
            if idle_exit_s is not None and time.monotonic() - idle_since > idle_exit_s:
                break
            time.sleep(poll_s)
            continue
        idle_since = time.monotonic()
        action = decide(state, patch_script)
        sent = bridge.send(action)
        last = action["tick"]
        handled += 1
        waiting = sum(1 for j in state.get("jobs") or [] if j.get("phase") == "WAITING")
        console.print(
            f"tick {last:>5}  t={float(state.get('time', 0.0)):8.2f}  waiting={waiting:<3} "
            f"assigned={len(action['assignments']):<3} patches={len(action['link_patches'])} "
            f"{'sent' if sent else 'REJECTED'}",
            markup=False,
        )
    return handled


def main():
    ap = argparse.ArgumentParser(description="Greedy agent for the scheduling testbed")
    ap.add_argument("--bridge", default=os.environ.get("TESTBED_BRIDGE", "bridge"))
    ap.add_argument("--remote", default=None, help="Base URL of testbed.run --transport http")
    ap.add_argument("--patches", default=None, help="YAML patch script keyed by tick")
    ap.add_argument("--max-ticks", type=int, default=None)
    ap.add_argument("--idle-exit", type=float, default=None,
                    help="Exit after this many seconds without a new state")
    args = ap.parse_args()

    bridge = RemoteBridge(args.remote) if args.remote else FileBridge(args.bridge)
    try:
        n = run(bridge, load_patch_script(args.patches), max_ticks=args.max_ticks,
                idle_exit_s=args.idle_exit)
    except KeyboardInterrupt:
        return
    console.print(f"handled {n} ticks", markup=False)


if __name__ == "__main__":
    main()
