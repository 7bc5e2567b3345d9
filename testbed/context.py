#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
testbed/context.py — State owned by one testbed run.

A RunContext is created once at start-up and handed to every component that
needs the network profile, the energy ledger, the cost model or the config.
Nothing here is module-global, so two runs (or two tests) never share state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .config import load_config, wait_timeout
from .cost_model import TransferCostModel
from .energy import EnergyLedger
from .links import NetworkProfile, load_profile


@dataclass
class RunContext:
    cfg: Dict[str, Any]
    profile: NetworkProfile
    ledger: EnergyLedger
    cost_model: TransferCostModel
    verbose: bool = False
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def tick_seconds(self) -> float:
        return float(self.cfg["tick_seconds"])

    @property
    def wait_timeout_s(self) -> float:
        return wait_timeout(self.cfg)

    @property
    def poll_interval_s(self) -> float:
        return float(self.cfg["poll_interval_s"])

    @classmethod
    def create(
        cls,
        cfg: Optional[Dict[str, Any]] = None,
        profile: Optional[NetworkProfile] = None,
        verbose: bool = False,
    ) -> "RunContext":
        cfg = cfg if cfg is not None else load_config()
        if profile is None:
            profile = NetworkProfile(verbose=verbose)
            if cfg.get("profile_path"):
                load_profile(cfg["profile_path"], profile, verbose=verbose)
        ledger = EnergyLedger(P_IDLE_W=cfg["p_idle_w"], P_MAX_W=cfg["p_max_w"])
        cost_model = TransferCostModel(profile, J_PER_BIT=cfg["j_per_bit"])
        return cls(cfg=cfg, profile=profile, ledger=ledger, cost_model=cost_model, verbose=verbose)
