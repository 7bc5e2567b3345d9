#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
testbed/run.py — run the testbed: SimPy engine + Poisson workload + tick broker.

Usage
-----
# File bridge (agent reads bridge/state_*.json, writes bridge/action_*.json)
python3 -m testbed.run --config configs/testbed.yaml --bridge bridge --until 60

# HTTP bridge (agent polls GET /state, POSTs /decision)
python3 -m testbed.run --transport http --host 127.0.0.1 --port 8080

# Start with a link profile and save a summary
python3 -m testbed.run --profile configs/links.csv --out /tmp/summary.json

Options
-------
--config PATH         YAML overriding testbed/config.py DEFAULTS
--profile PATH        link profile (CSV or YAML)
--bridge DIR          bridge directory for --transport file
--transport STR       file (default) or http
--tick SECONDS        tick length (simulated)
--wait SECONDS        AWAIT budget per tick (wall clock); default 0.9 × tick
--until SECONDS       simulated run length
--out PATH            write the run summary as JSON
--verbose             per-tick and per-assignment lines
"""

from __future__ import annotations

import argparse
import json
import os
import signal
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from .broker import TickBroker
from .channel import FileDecisionChannel, MemoryDecisionChannel
from .config import load_config
from .context import RunContext
from .engine import SimEngine
from .models import Resource
from .workload import PoissonWorkload

console = Console()


def build_argparser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Network-aware scheduling testbed")
    ap.add_argument("--config", default=os.environ.get("TESTBED_CONFIG"))
    ap.add_argument("--profile", default=os.environ.get("TESTBED_PROFILE"))
    ap.add_argument("--bridge", default=os.environ.get("TESTBED_BRIDGE"))
    ap.add_argument("--transport", choices=("file", "http"),
                    default=os.environ.get("TESTBED_TRANSPORT", "file"))
    ap.add_argument("--host", default=os.environ.get("TESTBED_API_HOST", "127.0.0.1"))
    ap.add_argument("--port", type=int, default=int(os.environ.get("TESTBED_API_PORT", "8080")))
    ap.add_argument("--tick", type=float, default=None)
    ap.add_argument("--wait", type=float, default=None)
    ap.add_argument("--until", type=float, default=None)
    ap.add_argument("--out", default=None)
    ap.add_argument("--verbose", action="store_true")
    return ap


def make_channel(ctx: RunContext, transport: str, bridge: Optional[str]):
    if transport == "http":
        return MemoryDecisionChannel(verbose=ctx.verbose)
    return FileDecisionChannel(
        bridge or ctx.cfg["bridge_dir"],
        poll_interval_s=ctx.poll_interval_s,
        verbose=ctx.verbose,
    )


def serve_api(ctx: RunContext, channel: MemoryDecisionChannel, host: str, port: int) -> threading.Thread:
    from .api import create_app

    app = create_app(channel, ctx.profile, ctx.cost_model)
    th = threading.Thread(
        target=app.run,
        kwargs={"host": host, "port": port, "debug": False, "use_reloader": False},
        name="TestbedAPI",
        daemon=True,
    )
    th.start()
    return th


def job_rows(engine: SimEngine) -> List[Dict[str, Any]]:
    rows = []
    for j in sorted(engine.finished_jobs(), key=lambda x: x.job_id):
        rows.append({
            "id": j.job_id,
            "stream": j.stream,
            "resource": j.resource_id,
            "arrival": round(j.arrival_time, 3),
            "submit_delay": round(j.submission_delay, 4),
            "start": round(j.start_time or 0.0, 3),
            "finish": round(j.finish_time or 0.0, 3),
        })
    return rows


def print_summary(summary: Dict[str, Any], rows: List[Dict[str, Any]]):
    table = Table(title="Finished jobs")
    for col in ("id", "stream", "resource", "arrival", "submit_delay", "start", "finish"):
        table.add_column(col)
    for r in rows:
        table.add_row(*[str(r[c]) for c in ("id", "stream", "resource", "arrival", "submit_delay", "start", "finish")])
    console.print(table)

    energy = summary["energy"]
    console.print(
        f"ticks={summary['ticks']} decisions={summary['decisions_received']} "
        f"timeouts={summary['timeouts']} assigned={summary['assignments_applied']} "
        f"patched={summary['patches_applied']} unreachable={summary['rejected_unreachable']}"
    )
    console.print(
        f"energy: compute={sum(energy['compute_joules'].values()):.2f} J "
        f"network={energy['network_joules']:.4f} J total={energy['total_joules']:.2f} J"
    )


def main(argv: Optional[List[str]] = None) -> Dict[str, Any]:
    args = build_argparser().parse_args(argv)
    cfg = load_config(
        args.config,
        profile_path=args.profile,
        tick_seconds=args.tick,
        wait_timeout_s=args.wait,
        until_s=args.until,
    )
    ctx = RunContext.create(cfg, verbose=args.verbose)

    engine = SimEngine(
        [Resource.from_dict(r) for r in cfg["resources"]],
        clock_step_s=cfg["clock_step_s"],
        verbose=args.verbose,
    )
    channel = make_channel(ctx, args.transport, args.bridge)
    if args.transport == "http":
        serve_api(ctx, channel, args.host, args.port)
        print(f"[testbed] API on http://{args.host}:{args.port}")

    PoissonWorkload.from_config(engine, cfg).attach()
    broker = TickBroker(ctx, engine, channel, verbose=args.verbose).attach()
    engine.on_stop(channel.close)

    def handle_sig(sig, frame):
        print("\n[testbed] Stopping...")
        engine.stop()
    signal.signal(signal.SIGINT, handle_sig)
    signal.signal(signal.SIGTERM, handle_sig)

    end = engine.run(until=cfg["until_s"])
    channel.close()

    summary = {**broker.summary(), "sim_end_s": end, "finished": len(engine.finished_jobs()),
               "waiting": len(engine.waiting_jobs()), "running": len(engine.running_jobs())}
    rows = job_rows(engine)
    print_summary(summary, rows)

    if args.out:
        Path(args.out).parent.mkdir(parents=True, exist_ok=True)
        Path(args.out).write_text(json.dumps({"summary": summary, "jobs": rows}, indent=2))
        print(f"[testbed] summary written to {args.out}")
    return summary


if __name__ == "__main__":
    main()
