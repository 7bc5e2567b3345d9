#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
testbed/links.py — Time-indexed network profile for the scheduling testbed.

Responsibilities
---------------
- LinkMetrics: immutable snapshot of one directed link (RTT, up/down Mbps,
  loss, availability) with effective-bandwidth helpers.
- NetworkProfile: (src, dst) → time series of (t_start, LinkMetrics), plus a
  standing override layer that wins over the series at every query time.
- Bulk loaders:
    • load_profile_csv(path)   t_start,src,dst,rtt_ms,up_mbps,down_mbps,loss,up_flag
    • load_profile_yaml(path)  {links: [{src, dst, t_start?, rtt_ms, ...}, ...]}

Design notes
------------
- Links are directed; (A, B) and (B, A) are separate series.
- Every map is guarded by one RLock. Readers get whole LinkMetrics objects,
  which are frozen, so a query never observes a half-written entry.
- Unknown pairs resolve to DEFAULT_LINK (down, zero bandwidth).

"""

from __future__ import annotations

import csv
import math
import threading
from bisect import bisect_right
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import yaml


# ----------------------------- helpers -----------------------------

def safe_float(x: Any, default: float = 0.0) -> float:
    try:
        v = float(x)
    except Exception:
        return default
    return v if math.isfinite(v) else default


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def parse_flag(x: Any, default: bool = True) -> bool:
    """'0'/'false' (any case, padded) → False; missing → default; anything else → True."""
    if x is None:
        return default
    s = str(x).strip().lower()
    return not (s == "0" or s == "false")


Pair = Tuple[str, str]


# ----------------------------- data classes -----------------------------

@dataclass(frozen=True)
class LinkMetrics:
    """Directed link snapshot. Bandwidths are raw Mbps; loss is a ratio."""
    rtt_ms: float = 0.0
    up_mbps: float = 0.0
    down_mbps: float = 0.0
    loss: float = 0.0
    up: bool = True

    def __post_init__(self):
        # frozen: normalise through object.__setattr__
        object.__setattr__(self, "rtt_ms", max(0.0, safe_float(self.rtt_ms, 0.0)))
        object.__setattr__(self, "up_mbps", max(0.0, safe_float(self.up_mbps, 0.0)))
        object.__setattr__(self, "down_mbps", max(0.0, safe_float(self.down_mbps, 0.0)))
        object.__setattr__(self, "loss", clamp(safe_float(self.loss, 0.0), 0.0, 1.0))
        object.__setattr__(self, "up", bool(self.up))

    @property
    def eff_up_mbps(self) -> float:
        return self.up_mbps * (1.0 - self.loss)

    @property
    def eff_down_mbps(self) -> float:
        return self.down_mbps * (1.0 - self.loss)

    @property
    def available(self) -> bool:
        """Flag set and at least one direction still carries traffic after loss."""
        return self.up and (self.eff_up_mbps > 0.0 or self.eff_down_mbps > 0.0)

    def with_up(self, up: bool) -> "LinkMetrics":
        return replace(self, up=up)

    def with_loss(self, loss: float) -> "LinkMetrics":
        return replace(self, loss=loss)

    def with_rtt(self, rtt_ms: float) -> "LinkMetrics":
        return replace(self, rtt_ms=rtt_ms)

    def with_bandwidth(self, up_mbps: float, down_mbps: Optional[float] = None) -> "LinkMetrics":
        return replace(self, up_mbps=up_mbps, down_mbps=up_mbps if down_mbps is None else down_mbps)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rtt_ms": self.rtt_ms,
            "up_mbps": self.up_mbps,
            "down_mbps": self.down_mbps,
            "loss": self.loss,
            "up": self.up,
            "eff_up_mbps": round(self.eff_up_mbps, 6),
            "eff_down_mbps": round(self.eff_down_mbps, 6),
            "available": self.available,
        }


DEFAULT_LINK = LinkMetrics(rtt_ms=0.0, up_mbps=0.0, down_mbps=0.0, loss=0.0, up=False)


# ----------------------------- profile -----------------------------

class NetworkProfile:
    """
    Directed link timelines with a standing override layer.

    query(src, dst, t) resolution:
      1. override for (src, dst), if any
      2. latest entry with t_start <= t
      3. earliest entry (t precedes the whole series)
      4. DEFAULT_LINK (pair never seen)
    """

    def __init__(self, default: LinkMetrics = DEFAULT_LINK, verbose: bool = False):
        self._lock = threading.RLock()
        self._times: Dict[Pair, List[float]] = {}
        self._series: Dict[Pair, List[LinkMetrics]] = {}
        self._overrides: Dict[Pair, LinkMetrics] = {}
        self.default = default
        self.verbose = verbose

    # -------- writes --------

    def put(self, src: Any, dst: Any, t_start: Any, metrics: LinkMetrics) -> None:
        """Insert (or replace at an identical instant) one timeline entry."""
        t = safe_float(t_start, math.nan)
        if src is None or dst is None or math.isnan(t) or not isinstance(metrics, LinkMetrics):
            print(f"[profile] WARN: dropped put {src!r}->{dst!r} t={t_start!r}")
            return
        key = (str(src), str(dst))
        with self._lock:
            times = self._times.setdefault(key, [])
            series = self._series.setdefault(key, [])
            i = bisect_right(times, t)
            if i > 0 and times[i - 1] == t:
                series[i - 1] = metrics
            else:
                times.insert(i, t)
                series.insert(i, metrics)

    def override(self, src: Any, dst: Any, metrics: LinkMetrics) -> None:
        if src is None or dst is None or not isinstance(metrics, LinkMetrics):
            print(f"[profile] WARN: dropped override {src!r}->{dst!r}")
            return
        with self._lock:
            self._overrides[(str(src), str(dst))] = metrics

    def clear_override(self, src: Any, dst: Any) -> bool:
        with self._lock:
            return self._overrides.pop((str(src), str(dst)), None) is not None

    # -------- reads --------

    def query(self, src: Any, dst: Any, t: float) -> LinkMetrics:
        key = (str(src), str(dst))
        try:
            t = float(t)
        except (TypeError, ValueError):
            t = math.inf
        if math.isnan(t):
            t = math.inf
        with self._lock:
            ov = self._overrides.get(key)
            if ov is not None:
                return ov
            times = self._times.get(key)
            if not times:
                return self.default
            i = bisect_right(times, t) - 1
            return self._series[key][max(i, 0)]

    def latest(self, src: Any, dst: Any) -> LinkMetrics:
        return self.query(src, dst, math.inf)

    def timeline(self, src: Any, dst: Any) -> List[Tuple[float, LinkMetrics]]:
        key = (str(src), str(dst))
        with self._lock:
            return list(zip(self._times.get(key, []), self._series.get(key, [])))

    def pairs(self) -> List[Pair]:
        with self._lock:
            return sorted(set(self._times) | set(self._overrides))

    def __len__(self) -> int:
        with self._lock:
            return sum(len(v) for v in self._times.values())

    def snapshot(self, t: Optional[float] = None) -> List[Dict[str, Any]]:
        """Per-pair view for clients; 'current' is resolved at t (or the latest entry)."""
        at = math.inf if t is None else t
        with self._lock:
            out = []
            for src, dst in self.pairs():
                ov = self._overrides.get((src, dst))
                out.append({
                    "src": src,
                    "dst": dst,
                    "series": [{"t_start": ts, **m.to_dict()} for ts, m in self.timeline(src, dst)],
                    "override": ov.to_dict() if ov is not None else None,
                    "current": self.query(src, dst, at).to_dict(),
                })
            return out


# ----------------------------- loaders -----------------------------

def _row_metrics(fields: List[str]) -> Tuple[float, str, str, LinkMetrics]:
    """
    Parse one CSV row. Raises ValueError on short rows or bad numerics.

      8+ cols: t, src, dst, rtt, up_mbps, down_mbps, loss, up_flag
      6-7    : t, src, dst, rtt, bw_mbps, loss          (symmetric, available)
      5      : t, src, dst, rtt, bw_mbps                (symmetric, loss 0, available)
    """
    n = len(fields)
    if n < 5:
        raise ValueError(f"too few columns ({n})")
    t = float(fields[0])
    src, dst = fields[1].strip(), fields[2].strip()
    if not src or not dst:
        raise ValueError("empty node id")
    rtt = float(fields[3])
    if n >= 8:
        up = float(fields[4])
        down = float(fields[5])
        loss = float(fields[6])
        ok = parse_flag(fields[7])
    elif n >= 6:
        up = down = float(fields[4])
        loss = float(fields[5])
        ok = True
    else:
        up = down = float(fields[4])
        loss = 0.0
        ok = True
    return t, src, dst, LinkMetrics(rtt_ms=rtt, up_mbps=up, down_mbps=down, loss=loss, up=ok)


def load_profile_csv(
    path: Union[str, Path],
    profile: Optional[NetworkProfile] = None,
    verbose: bool = False,
) -> NetworkProfile:
    """Load (or extend) a profile from CSV. Bad rows are skipped one by one."""
    np_ = profile if profile is not None else NetworkProfile(verbose=verbose)
    loaded = skipped = 0
    with open(path, "r", encoding="utf-8", newline="") as f:
        for lineno, row in enumerate(csv.reader(f), start=1):
            fields = [c.strip() for c in row]
            if not fields or not any(fields) or fields[0].startswith("#"):
                continue
            try:
                t, src, dst, m = _row_metrics(fields)
            except ValueError as e:
                skipped += 1
                print(f"[profile] WARN: skip {Path(path).name}:{lineno} ({e}): {','.join(row)}")
                continue
            np_.put(src, dst, t, m)
            loaded += 1
    if verbose:
        print(f"[profile] loaded {loaded} rows from {path} ({skipped} skipped)")
    return np_


def load_profile_yaml(
    path: Union[str, Path],
    profile: Optional[NetworkProfile] = None,
    verbose: bool = False,
) -> NetworkProfile:
    """
    YAML layout:

      links:
        - {src: gs, dst: vm-101, t_start: 0, rtt_ms: 25, up_mbps: 300, down_mbps: 900, loss: 0.01, up: true}
        - {src: sat, dst: vm-201, rtt_ms: 40, bw_mbps: 150, override: true}

    Entries flagged 'override: true' become standing overrides.
    """
    np_ = profile if profile is not None else NetworkProfile(verbose=verbose)
    doc = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    entries: Iterable[Any] = (doc.get("links") or []) if isinstance(doc, dict) else []
    for e in entries:
        if not isinstance(e, dict) or e.get("src") is None or e.get("dst") is None:
            print(f"[profile] WARN: skip yaml link entry: {e!r}")
            continue
        bw = e.get("bw_mbps")
        m = LinkMetrics(
            rtt_ms=safe_float(e.get("rtt_ms"), 0.0),
            up_mbps=safe_float(e.get("up_mbps", bw), 0.0),
            down_mbps=safe_float(e.get("down_mbps", bw), 0.0),
            loss=safe_float(e.get("loss"), 0.0),
            up=parse_flag(e.get("up")),
        )
        if e.get("override"):
            np_.override(e["src"], e["dst"], m)
        else:
            np_.put(e["src"], e["dst"], safe_float(e.get("t_start"), 0.0), m)
    if verbose:
        print(f"[profile] loaded {len(np_)} entries from {path}")
    return np_


def load_profile(path: Union[str, Path], profile: Optional[NetworkProfile] = None,
                 verbose: bool = False) -> NetworkProfile:
    """Dispatch on file suffix (.yaml/.yml → YAML, anything else → CSV)."""
    if Path(path).suffix.lower() in (".yaml", ".yml"):
        return load_profile_yaml(path, profile, verbose=verbose)
    return load_profile_csv(path, profile, verbose=verbose)
