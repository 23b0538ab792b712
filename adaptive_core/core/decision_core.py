# ═══════════════════════════════════════════════════════════════════════════════
# DECISION CORE
# Wires the coordination network, strategy bandit and cluster engine together
# ═══════════════════════════════════════════════════════════════════════════════


"""
The host application constructs one DecisionCore at startup, calls start()
to load saved state, routes requests through it, drives tick() from its own
scheduler and calls shutdown() on exit so pending state is flushed.

Nothing here is a module-level singleton; tests build as many cores as they
like against in-memory storage.
"""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Union

import numpy as np
from loguru import logger

from adaptive_core.core.cluster_engine import (
    ClusterEngine,
    ClusterEngineConfig,
    ClusterResult,
    CustomerFeatures,
)
from adaptive_core.core.hierarchical_network import (
    HierarchicalOscillator,
    HierarchicalOscillatorNetwork,
)
from adaptive_core.core.oscillator_network import NetworkConfig
from adaptive_core.core.role_hierarchy import RoleSettings, UserRole
from adaptive_core.core.storage import (
    DebouncedWriter,
    PersistenceConfig,
    StoragePort,
    create_storage,
)
from adaptive_core.core.strategy_engine import (
    DealContext,
    StrategyEngine,
    StrategyEngineConfig,
    StrategyRecommendation,
)


@dataclass
class CoreConfig:
    """Top-level configuration aggregating all engine configs."""
    name: str = "decision_core"
    seed: Optional[int] = None

    # Component configs (optional - defaults used if None)
    network: Optional[NetworkConfig] = None
    strategy: Optional[StrategyEngineConfig] = None
    cluster: Optional[ClusterEngineConfig] = None
    persistence: Optional[PersistenceConfig] = None

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "CoreConfig":
        """Build from plain JSON-style data. Unknown keys are ignored."""
        return cls(
            name=str(d.get("name", "decision_core")),
            seed=d.get("seed"),
            network=_section(NetworkConfig, d.get("network")),
            strategy=_section(StrategyEngineConfig, d.get("strategy")),
            cluster=_section(ClusterEngineConfig, d.get("cluster")),
            persistence=_section(PersistenceConfig, d.get("persistence")),
        )

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "CoreConfig":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


def _section(cls: type, d: Optional[Mapping[str, Any]]) -> Any:
    if d is None:
        return None
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in d.items() if k in names})


class DecisionCore:
    """
    Service container for the three online-learning engines.

    Every mutating call runs under self.lock, a re-entrant lock the host
    can also hold around a batch of calls. Mutations only mark engine state
    dirty; storage is written from tick() (debounced per engine) and
    flush()/shutdown().
    """

    def __init__(
        self,
        config: Optional[CoreConfig] = None,
        storage: Optional[StoragePort] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or CoreConfig()
        self.name = self.config.name
        persistence = self.config.persistence or PersistenceConfig()

        self.storage = storage if storage is not None else create_storage(persistence)
        self.lock = threading.RLock()

        # Independent streams so one engine's draws never shift another's
        network_seq, strategy_seq, cluster_seq = np.random.SeedSequence(self.config.seed).spawn(3)

        self.network = HierarchicalOscillatorNetwork(
            self.config.network,
            rng=np.random.default_rng(network_seq),
        )
        self.strategies = StrategyEngine(
            self.config.strategy or StrategyEngineConfig(save_cooldown=persistence.save_cooldown),
            rng=np.random.default_rng(strategy_seq),
            storage=self.storage,
            clock=clock,
        )
        self.clusters = ClusterEngine(
            self.config.cluster,
            rng=np.random.default_rng(cluster_seq),
        )

        self.network_writer = DebouncedWriter(
            lambda: self.network.save_state(self.storage),
            cooldown=persistence.save_cooldown,
            clock=clock,
            name=self.network.label,
        )
        self.cluster_writer = DebouncedWriter(
            lambda: self.clusters.save_state(self.storage),
            cooldown=persistence.save_cooldown,
            clock=clock,
            name=self.clusters.label,
        )

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def start(self) -> Dict[str, bool]:
        """Load saved state for every engine. Never raises on bad state."""
        with self.lock:
            loaded = {
                "network": self.network.load_state(self.storage),
                "strategies": self.strategies.load_state(self.storage),
                "clusters": self.clusters.load_state(self.storage),
            }
        logger.info(
            f"[{self.name}] Started: {sum(loaded.values())}/3 engines restored, "
            f"{self.network.n} staff, {self.clusters.total_points} customers seen"
        )
        return loaded

    def tick(self, dt: Optional[float] = None) -> dict:
        """Advance the network one step and give due writers a chance to flush."""
        with self.lock:
            self.network.update(dt)
            self.network_writer.mark_dirty()
            saved = self._maybe_flush()
            return {
                "time": self.network.time,
                "coherence": self.network.compute_coherence(),
                "saved": saved,
            }

    def flush(self) -> Dict[str, bool]:
        """Write every engine with pending changes, ignoring cooldowns."""
        with self.lock:
            return {
                "network": self.network_writer.flush(),
                "strategies": self.strategies.flush(),
                "clusters": self.cluster_writer.flush(),
            }

    def shutdown(self) -> Dict[str, bool]:
        written = self.flush()
        logger.info(f"[{self.name}] Shutdown, flushed {sum(written.values())} engine(s)")
        return written

    # ── Staff ────────────────────────────────────────────────────────────────

    def add_user(
        self,
        id: str,
        name: str,
        role: UserRole,
        settings: Optional[RoleSettings] = None,
        manager_id: Optional[str] = None,
    ) -> HierarchicalOscillator:
        with self.lock:
            node = self.network.add_user(id, name, role, settings=settings, manager_id=manager_id)
            self.network_writer.mark_dirty()
            return node

    def remove_user(self, id: str) -> None:
        with self.lock:
            self.network.remove_user(id)
            self.network_writer.mark_dirty()

    def assign_new_lead(self, lead_priority: float = 0.5) -> Optional[str]:
        with self.lock:
            return self.network.assign_new_lead(lead_priority)

    def record_deal_closed(self, salesperson_id: str) -> None:
        with self.lock:
            self.network.record_deal_closed(salesperson_id)
            self.network_writer.mark_dirty()

    def update_workload(self, salesperson_id: str, active_deals: int) -> None:
        with self.lock:
            self.network.update_workload(salesperson_id, active_deals)
            self.network_writer.mark_dirty()

    def reassign_manager(self, id: str, manager_id: Optional[str]) -> None:
        with self.lock:
            self.network.reassign_manager(id, manager_id)
            self.network_writer.mark_dirty()

    def update_performance_metrics(
        self, id: str, metrics: Optional[Dict[str, Any]] = None, **kwargs: Any
    ) -> None:
        with self.lock:
            self.network.update_performance_metrics(id, metrics, **kwargs)
            self.network_writer.mark_dirty()

    def update_role_state(self, id: str, **counters: int) -> None:
        with self.lock:
            self.network.update_role_state(id, **counters)
            self.network_writer.mark_dirty()

    def reset_daily_stats(self) -> None:
        """Start a new day: clears closed-deal counts and role counters."""
        with self.lock:
            self.network.reset_daily_stats()
            self.network_writer.mark_dirty()

    # ── Deals ────────────────────────────────────────────────────────────────

    def recommend(self, context: DealContext) -> StrategyRecommendation:
        with self.lock:
            return self.strategies.get_recommendation(context)

    def record_outcome(self, strategy_key: str, success: bool) -> None:
        with self.lock:
            self.strategies.record_outcome(strategy_key, success)

    # ── Customers ────────────────────────────────────────────────────────────

    def process_customer(
        self, features: Union[CustomerFeatures, Mapping[str, Any], None]
    ) -> ClusterResult:
        with self.lock:
            result = self.clusters.process_customer(features)
            self.cluster_writer.mark_dirty()
            return result

    # ── Internal ─────────────────────────────────────────────────────────────

    def _maybe_flush(self) -> Dict[str, bool]:
        saved = {
            "network": self.network_writer.maybe_flush(),
            "clusters": self.cluster_writer.maybe_flush(),
        }
        if self.strategies.writer is not None:
            saved["strategies"] = self.strategies.writer.maybe_flush()
        return saved


def create_core(
    storage_dir: Optional[str] = None,
    seed: Optional[int] = None,
    name: str = "decision_core",
) -> DecisionCore:
    """
    Create a DecisionCore with default engine settings.

    With no storage_dir the core keeps its state in memory only.
    """
    config = CoreConfig(
        name=name,
        seed=seed,
        persistence=PersistenceConfig(storage_dir=storage_dir),
    )
    return DecisionCore(config)
