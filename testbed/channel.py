#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
testbed/channel.py — State/decision exchange with the external agent.

Interface (both transports)
---------------------------
ch.publish(tick, state)                  → atomically expose the tick's state
ch.await_decision(tick, timeout)         → Decision (empty on timeout/close)
ch.close()                               → abort any wait in progress

Transports
----------
FileDecisionChannel(bridge_dir)
    bridge/tmp/state_000007.json.tmp  --os.replace-->  bridge/state_000007.json
    agent writes                                     bridge/action_000007.json
MemoryDecisionChannel()
    in-process; the Flask API (testbed/api.py) reads the latest state and
    submits decisions into it.

Rules
-----
- A decision is keyed by tick. A payload whose own "tick" field names a
  different tick is ignored.
- A missing decision is "not ready", never an error. So is a decision file
  that does not parse yet (the agent may still be writing it).
- A payload of the wrong shape degrades to an empty decision.
- Only publishing (and clearing a previous run's files) can fail hard:
  BridgeWriteError.
- The file transport starts from an empty bridge directory; leftovers from
  an earlier run are removed when the channel is created.
"""

from __future__ import annotations

import json
import os
import re
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .assign import norm_id


_NOT_READY = object()

BRIDGE_FILE_RE = re.compile(r"^(state|action)_\d{6,}\.json$")


class BridgeWriteError(RuntimeError):
    """State could not be published; the agent cannot decide without it."""


@dataclass
class Decision:
    tick: int
    assignments: List[Any] = field(default_factory=list)
    link_patches: List[Any] = field(default_factory=list)
    received: bool = False

    @classmethod
    def empty(cls, tick: int) -> "Decision":
        return cls(tick=int(tick))

    @property
    def is_empty(self) -> bool:
        return not self.assignments and not self.link_patches


def _list_field(raw: Dict[str, Any], *keys: str) -> List[Any]:
    for k in keys:
        if k in raw:
            v = raw[k]
            if isinstance(v, list):
                return v
            if v is not None:
                print(f"[channel] WARN: '{k}' is not a list; ignored")
            return []
    return []


def parse_decision(raw: Any, tick: int) -> Optional[Decision]:
    """
    Map an agent payload onto a Decision for `tick`.
    Returns None when the payload is tagged for another tick.
    """
    if not isinstance(raw, dict):
        print(f"[channel] WARN: tick {tick}: decision is not an object; using empty decision")
        return Decision(tick=int(tick), received=True)
    if "tick" in raw and raw["tick"] is not None and norm_id(raw["tick"]) != str(int(tick)):
        print(f"[channel] WARN: tick {tick}: ignoring decision tagged tick={raw['tick']!r}")
        return None
    return Decision(
        tick=int(tick),
        assignments=_list_field(raw, "assignments", "assign"),
        link_patches=_list_field(raw, "link_patches", "link_patch"),
        received=True,
    )


# ----------------------------- file transport -----------------------------

class FileDecisionChannel:
    STATE_FMT = "state_{:06d}.json"
    ACTION_FMT = "action_{:06d}.json"

    def __init__(self, bridge_dir: Union[str, Path], poll_interval_s: float = 0.01,
                 verbose: bool = False, clean: bool = True):
        self.bridge_dir = Path(bridge_dir)
        self.tmp_dir = self.bridge_dir / "tmp"
        self.poll_interval_s = max(0.001, float(poll_interval_s))
        self.verbose = verbose
        self._closed = threading.Event()
        try:
            self.tmp_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BridgeWriteError(f"cannot create bridge dir {self.tmp_dir}: {e}") from e
        if clean:
            self.clean()

    def log(self, msg: str):
        if self.verbose:
            print(f"[channel] {msg}")

    def clean(self) -> int:
        """
        Remove state/action files and temp files left by an earlier run, so
        tick k of this run never sees tick k of the previous one.
        """
        stale = [p for p in self.bridge_dir.iterdir() if p.is_file() and BRIDGE_FILE_RE.match(p.name)]
        stale += [p for p in self.tmp_dir.iterdir() if p.is_file()]
        for p in stale:
            try:
                p.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                raise BridgeWriteError(f"cannot remove stale bridge file {p}: {e}") from e
        if stale:
            print(f"[channel] WARN: removed {len(stale)} stale file(s) from {self.bridge_dir}")
        return len(stale)

    def state_path(self, tick: int) -> Path:
        return self.bridge_dir / self.STATE_FMT.format(int(tick))

    def action_path(self, tick: int) -> Path:
        return self.bridge_dir / self.ACTION_FMT.format(int(tick))

    def publish(self, tick: int, state: Dict[str, Any]) -> Path:
        final = self.state_path(tick)
        tmp = self.tmp_dir / (final.name + ".tmp")
        try:
            self.tmp_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(state, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, final)
        except (OSError, TypeError, ValueError) as e:
            raise BridgeWriteError(f"tick {tick}: failed to publish {final}: {e}") from e
        self.log(f"published {final.name}")
        return final

    def _try_read(self, path: Path) -> Any:
        """Returns the parsed payload, or _NOT_READY."""
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return _NOT_READY
        except OSError as e:
            print(f"[channel] WARN: cannot read {path.name}: {e}")
            return _NOT_READY
        try:
            return json.loads(text)
        except ValueError:
            return _NOT_READY

    def await_decision(self, tick: int, timeout: float) -> Decision:
        path = self.action_path(tick)
        deadline = time.monotonic() + max(0.0, float(timeout))
        while not self._closed.is_set():
            raw = self._try_read(path)
            if raw is not _NOT_READY:
                d = parse_decision(raw, tick)
                if d is None:
                    return Decision.empty(tick)
                self.log(f"tick {tick}: {len(d.assignments)} assignments, {len(d.link_patches)} patches")
                return d
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            self._closed.wait(min(self.poll_interval_s, remaining))
        self.log(f"tick {tick}: no decision (timeout or closed)")
        return Decision.empty(tick)

    def close(self) -> None:
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()


# ----------------------------- in-memory transport -----------------------------

class MemoryDecisionChannel:
    """Condition-variable transport shared with the HTTP API thread."""

    def __init__(self, verbose: bool = False):
        self._cv = threading.Condition()
        self._state: Optional[Dict[str, Any]] = None
        self._tick: int = -1
        self._consumed_through: int = -1
        self._pending: Dict[int, Any] = {}
        self._closed = False
        self.verbose = verbose
        self.published = 0
        self.consumed = 0

    def publish(self, tick: int, state: Dict[str, Any]) -> None:
        try:
            frozen = json.loads(json.dumps(state))
        except (TypeError, ValueError) as e:
            raise BridgeWriteError(f"tick {tick}: state is not serialisable: {e}") from e
        with self._cv:
            self._state = frozen
            self._tick = int(tick)
            self.published += 1
            # decisions for earlier ticks can never be applied now
            for k in [k for k in self._pending if k < self._tick]:
                self._pending.pop(k, None)
            self._cv.notify_all()

    def latest(self) -> Optional[Dict[str, Any]]:
        with self._cv:
            return self._state

    @property
    def current_tick(self) -> int:
        with self._cv:
            return self._tick

    def submit(self, tick: int, payload: Any) -> bool:
        """Queue a decision. False when that tick has already been published and consumed."""
        tick = int(tick)
        with self._cv:
            if self._closed or tick < self._tick or tick <= self._consumed_through:
                return False
            self._pending[tick] = payload
            self._cv.notify_all()
            return True

    def await_decision(self, tick: int, timeout: float) -> Decision:
        tick = int(tick)
        deadline = time.monotonic() + max(0.0, float(timeout))
        with self._cv:
            while not self._closed and tick not in self._pending:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._cv.wait(remaining)
            raw = self._pending.pop(tick, _NOT_READY)
            self._consumed_through = max(self._consumed_through, tick)
            if raw is not _NOT_READY:
                self.consumed += 1
        if raw is _NOT_READY:
            if self.verbose:
                print(f"[channel] tick {tick}: no decision (timeout or closed)")
            return Decision.empty(tick)
        d = parse_decision(raw, tick)
        return d if d is not None else Decision.empty(tick)

    def close(self) -> None:
        with self._cv:
            self._closed = True
            self._cv.notify_all()

    @property
    def closed(self) -> bool:
        with self._cv:
            return self._closed
