#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
testbed/api.py — Flask API in front of the in-memory decision channel.

Endpoints
---------
GET  /health
GET  /state              latest published tick state
POST /decision           { tick, assignments?: [...], link_patches?: [...] }
GET  /links?t=SECONDS    network profile (series, override, resolved metrics)
POST /estimate           { src, dst, bytes, t?, flows? } → transfer breakdown

The simulation publishes into a MemoryDecisionChannel; this app only reads
the latest state and queues decisions. Run it through testbed/run.py
(--transport http), which serves it from a daemon thread next to the engine.
"""

from __future__ import annotations

import time
from typing import Any, Optional

from flask import Flask, jsonify, request

from .channel import MemoryDecisionChannel
from .cost_model import TransferCostModel, bytes_to_bits
from .links import NetworkProfile, safe_float


def _ok(data: Any, status: int = 200):
    return jsonify({"ok": True, "data": data}), status


def _err(msg: str, status: int = 400, **extra):
    return jsonify({"ok": False, "error": msg, **extra}), status


def create_app(
    channel: MemoryDecisionChannel,
    profile: Optional[NetworkProfile] = None,
    cost_model: Optional[TransferCostModel] = None,
) -> Flask:
    app = Flask(__name__)
    profile = profile if profile is not None else NetworkProfile()
    cost_model = cost_model if cost_model is not None else TransferCostModel(profile)

    @app.get("/health")
    def health():
        return _ok({"ts": int(time.time() * 1000), "tick": channel.current_tick, "closed": channel.closed})

    @app.get("/state")
    def state():
        snap = channel.latest()
        if snap is None:
            return _err("no state published yet", 404)
        return _ok(snap)

    @app.post("/decision")
    def decision():
        """
        Queue the agent's decision for one tick.
        Body:
        {
          "tick": 12,
          "assignments": [ {"job_id": 3, "resource_id": 101}, ... ],
          "link_patches": [ {"src": "1", "dst": "101", "rtt_ms": 30, ...}, ... ]
        }
        """
        if not request.is_json:
            return _err("expected JSON body")
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return _err("decision must be a JSON object")
        raw_tick = body.get("tick", channel.current_tick)
        tick = safe_float(raw_tick, float("nan"))
        if tick != tick or not float(tick).is_integer() or tick < 0:
            return _err(f"bad tick: {raw_tick!r}")
        if not channel.submit(int(tick), body):
            return _err(f"tick {int(tick)} already passed", 409, current_tick=channel.current_tick)
        return _ok({"queued": True, "tick": int(tick)})

    @app.get("/links")
    def links():
        t = request.args.get("t")
        at = safe_float(t, float("nan")) if t is not None else None
        if at is not None and at != at:
            return _err(f"bad t: {t!r}")
        return _ok({"links": profile.snapshot(at)})

    @app.post("/estimate")
    def estimate():
        if not request.is_json:
            return _err("expected JSON body")
        body = request.get_json(silent=True) or {}
        src, dst = body.get("src"), body.get("dst")
        if src is None or dst is None:
            return _err("missing 'src' or 'dst'")
        bits = bytes_to_bits(max(0.0, safe_float(body.get("bytes"), 0.0)))
        t = safe_float(body.get("t"), 0.0)
        flows = int(max(1.0, safe_float(body.get("flows"), 1.0)))
        return _ok(cost_model.describe(src, dst, bits, t, flows))

    return app
