#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
testbed/patches.py — Apply agent link patches to the network profile.

Patch record (aliases in brackets)
----------------------------------
{
  "src" [source], "dst" [destination],
  "rtt_ms" [latency_ms]          default 25
  "bw_up_mbps" [up_mbps]         default 300 (or bw_mbps if given)
  "bw_down_mbps" [down_mbps]     default 300 (or bw_mbps if given)
  "loss"                         default 0.01
  "up" [available]               "0"/"false" → down, anything else → up
  "t_start" [t, effective_time]  optional
  "clear_override"               optional bool
}

Without an effective time the patch becomes a standing override (valid from
the start, whatever the query time). With one, it is inserted into the
pair's timeline. A malformed field falls back to its default; a malformed
record is skipped without affecting the rest of the batch.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from .links import LinkMetrics, NetworkProfile, parse_flag, safe_float


DEFAULTS = {
    "RTT_MS": 25.0,
    "BW_MBPS": 300.0,
    "LOSS": 0.01,
}


def _first(rec: Dict[str, Any], *keys: str) -> Any:
    for k in keys:
        if k in rec and rec[k] is not None:
            return rec[k]
    return None


def _num(rec: Dict[str, Any], default: float, *keys: str) -> float:
    raw = _first(rec, *keys)
    if raw is None:
        return default
    v = safe_float(raw, float("nan"))
    if v != v:
        print(f"[patch] WARN: bad {keys[0]}={raw!r}; using {default}")
        return default
    return v


class LinkPatchApplier:
    def __init__(self, profile: NetworkProfile, verbose: bool = False, **cfg):
        self.profile = profile
        self.verbose = verbose
        self.cfg = {**DEFAULTS, **cfg}

    def metrics_from(self, rec: Dict[str, Any]) -> LinkMetrics:
        bw = _num(rec, self.cfg["BW_MBPS"], "bw_mbps")
        return LinkMetrics(
            rtt_ms=_num(rec, self.cfg["RTT_MS"], "rtt_ms", "latency_ms"),
            up_mbps=_num(rec, bw, "bw_up_mbps", "up_mbps"),
            down_mbps=_num(rec, bw, "bw_down_mbps", "down_mbps"),
            loss=_num(rec, self.cfg["LOSS"], "loss"),
            up=parse_flag(_first(rec, "up", "available")),
        )

    def effective_time(self, rec: Dict[str, Any]) -> Optional[float]:
        raw = _first(rec, "t_start", "t", "effective_time")
        if raw is None:
            return None
        t = safe_float(raw, float("nan"))
        if t != t:
            print(f"[patch] WARN: bad t_start={raw!r}; applying as override")
            return None
        return t

    def apply_one(self, rec: Any) -> bool:
        if not isinstance(rec, dict):
            print(f"[patch] WARN: skip non-object patch: {rec!r}")
            return False
        src = _first(rec, "src", "source")
        dst = _first(rec, "dst", "destination")
        if src is None or dst is None:
            print(f"[patch] WARN: skip patch without src/dst: {rec!r}")
            return False

        if rec.get("clear_override") and parse_flag(rec.get("clear_override"), False):
            self.profile.clear_override(src, dst)
            if self.verbose:
                print(f"[patch] clear override {src}->{dst}")
            return True

        m = self.metrics_from(rec)
        t = self.effective_time(rec)
        if t is None:
            self.profile.override(src, dst, m)
        else:
            self.profile.put(src, dst, t, m)
        if self.verbose:
            where = "override" if t is None else f"t={t:g}"
            print(f"[patch] {src}->{dst} {where} rtt={m.rtt_ms:g}ms up={m.up_mbps:g} "
                  f"down={m.down_mbps:g} loss={m.loss:g} up_flag={m.up}")
        return True

    def apply(self, patches: Iterable[Any]) -> int:
        """Apply a batch; returns how many records took effect."""
        if not isinstance(patches, (list, tuple)):
            return 0
        applied = 0
        for rec in patches:
            try:
                ok = self.apply_one(rec)
            except Exception as e:
                print(f"[patch] WARN: patch failed ({e}): {rec!r}")
                ok = False
            applied += int(ok)
        return applied
