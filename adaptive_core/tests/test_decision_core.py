"""Tests for the DecisionCore service container."""

import json
import os
import shutil
import tempfile

import pytest

from adaptive_core.core.cluster_engine import ClusterEngineConfig
from adaptive_core.core.decision_core import CoreConfig, DecisionCore, create_core
from adaptive_core.core.oscillator_network import NetworkConfig
from adaptive_core.core.role_hierarchy import UserRole
from adaptive_core.core.storage import FileStorage, InMemoryStorage, PersistenceConfig
from adaptive_core.core.strategy_engine import DealContext


@pytest.fixture
def tmp_dir():
    """Provide a temporary directory, cleaned up after test."""
    d = tempfile.mkdtemp()
    yield d
    shutil.rmtree(d, ignore_errors=True)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class CountingStorage(InMemoryStorage):
    def __init__(self):
        super().__init__()
        self.puts = 0

    def put(self, key, data):
        self.puts += 1
        super().put(key, data)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return InMemoryStorage()


def build_core(storage, clock, seed=42):
    core = DecisionCore(CoreConfig(seed=seed), storage=storage, clock=clock)
    core.add_user("sm", "Sam", UserRole.SALES_MANAGER)
    core.add_user("s1", "Alice", UserRole.SALES, manager_id="sm")
    core.add_user("s2", "Bob", UserRole.SENIOR_SALES, manager_id="sm")
    return core


# ── Config ──────────────────────────────────────────────────────────────────


def test_config_from_dict_ignores_unknown_keys():
    config = CoreConfig.from_dict(
        {
            "name": "lot_a",
            "seed": 7,
            "network": {"coupling_strength": 0.5, "warp_factor": 9},
            "cluster": {"n_clusters": 3},
            "persistence": {"save_cooldown": 1.0},
            "extra": True,
        }
    )
    assert config.name == "lot_a"
    assert config.seed == 7
    assert config.network == NetworkConfig(coupling_strength=0.5)
    assert config.cluster == ClusterEngineConfig(n_clusters=3)
    assert config.strategy is None
    assert config.persistence.save_cooldown == 1.0


def test_config_from_json_file(tmp_dir):
    path = os.path.join(tmp_dir, "core.json")
    with open(path, "w") as f:
        json.dump({"name": "lot_b", "cluster": {"n_clusters": 2}}, f)

    config = CoreConfig.from_json_file(path)
    core = DecisionCore(config, storage=InMemoryStorage())
    assert core.name == "lot_b"
    assert core.clusters.n_clusters == 2


def test_create_core_defaults_to_memory():
    core = create_core(seed=1)
    assert isinstance(core.storage, InMemoryStorage)


def test_create_core_with_directory(tmp_dir):
    core = create_core(storage_dir=tmp_dir)
    assert isinstance(core.storage, FileStorage)


# ── Lifecycle ───────────────────────────────────────────────────────────────


def test_start_with_empty_storage(storage, clock):
    core = DecisionCore(storage=storage, clock=clock)
    assert core.start() == {"network": False, "strategies": False, "clusters": False}


def test_start_survives_corrupt_state(storage, clock):
    storage.put("cluster_engine", "not json at all")
    storage.put("strategy_engine", json.dumps({"version": "9.0", "kind": "strategy_engine", "state": {}}))

    core = DecisionCore(storage=storage, clock=clock)
    loaded = core.start()

    assert loaded["clusters"] is False
    assert loaded["strategies"] is False
    assert core.clusters.total_points == 0
    assert all(s.trials == 1 for s in core.strategies.strategies.values())


def test_tick_advances_and_debounces(storage, clock):
    core = build_core(storage, clock)

    first = core.tick(0.1)
    assert first["time"] == pytest.approx(0.1)
    assert 0.0 <= first["coherence"] <= 1.0
    assert first["saved"]["network"] is True    # First write is immediate

    clock.now = 1.0
    assert core.tick(0.1)["saved"]["network"] is False

    clock.now = 6.0
    assert core.tick(0.1)["saved"]["network"] is True
    assert core.network_writer.write_count == 2


def test_shutdown_flushes_pending(storage, clock):
    core = build_core(storage, clock)
    core.tick(0.1)
    clock.now = 1.0
    core.tick(0.1)
    assert core.network_writer.dirty

    written = core.shutdown()
    assert written["network"] is True
    assert not core.network_writer.dirty
    assert core.flush() == {"network": False, "strategies": False, "clusters": False}


def test_state_survives_restart(storage, clock):
    core = build_core(storage, clock)
    for _ in range(5):
        core.tick(0.1)
    core.record_deal_closed("s1")
    core.record_outcome("extend_term", True)
    core.record_outcome("extend_term", False)
    for fico in (780, 520, 660):
        core.process_customer({"fico_score": fico})
    core.shutdown()

    restarted = DecisionCore(CoreConfig(seed=42), storage=storage, clock=clock)
    assert restarted.start() == {"network": True, "strategies": True, "clusters": True}

    assert restarted.network.n == 3
    assert restarted.network.get_hierarchical_oscillator("s1").manager_id == "sm"
    assert restarted.network.get_hierarchical_oscillator("s1").deals_closed_today == 1
    assert restarted.network.time == pytest.approx(core.network.time)
    extend = restarted.strategies.strategies["extend_term"]
    assert (extend.wins, extend.trials) == (2, 3)
    assert restarted.clusters.total_points == 3


def test_persistence_cooldown_reaches_strategy_writer(storage, clock):
    config = CoreConfig(persistence=PersistenceConfig(save_cooldown=30.0))
    core = DecisionCore(config, storage=storage, clock=clock)
    assert core.strategies.writer.cooldown == 30.0
    assert core.network_writer.cooldown == 30.0


# ── Routing ─────────────────────────────────────────────────────────────────


def test_staff_operations(storage, clock):
    core = build_core(storage, clock)
    core.update_workload("s2", 6)
    assert core.network.get_oscillator("s2").active_deals == 6
    assert core.assign_new_lead() in {"sm", "s1", "s2"}

    core.remove_user("sm")
    assert core.network.get_hierarchical_oscillator("s1").manager_id is None


def test_requests_do_not_write(clock):
    storage = CountingStorage()
    core = build_core(storage, clock)
    core.recommend(DealContext(vehicle_price=25_000, down_payment=2_000, term_months=72))
    core.record_outcome("optimize_rate", True)
    core.process_customer({"fico_score": 700, "income": 80_000})
    core.update_performance_metrics("s1", deals_this_month=3)

    assert storage.puts == 0
    assert core.strategies.writer.dirty
    assert core.cluster_writer.dirty


def test_tick_writes_dirty_engines(storage, clock):
    core = DecisionCore(CoreConfig(seed=3), storage=storage, clock=clock)
    core.record_outcome("extend_term", True)
    core.process_customer({"fico_score": 700, "income": 80_000})

    saved = core.tick()["saved"]
    assert saved == {"network": True, "clusters": True, "strategies": True}
    assert storage.get("strategy_engine") is not None
    assert storage.get("cluster_engine") is not None


def test_metric_update_survives_shutdown(storage, clock):
    core = build_core(storage, clock)
    core.flush()

    core.update_performance_metrics("s1", deals_this_month=7)
    core.shutdown()

    saved = json.loads(storage.get("hierarchy"))["state"]["oscillators"]
    assert saved["s1"]["metrics"]["deals_this_month"] == 7
    assert saved["sm"]["metrics"]["team_deals"] == 7


def test_hierarchy_routes_mark_network_dirty(storage, clock):
    core = build_core(storage, clock)
    core.add_user("s3", "Carol", UserRole.SALES)

    core.flush()
    core.reassign_manager("s3", "sm")
    assert core.network_writer.dirty
    assert "s3" in core.network.team_of("sm")

    core.flush()
    core.update_role_state("s1", test_drives_today=4)
    assert core.network_writer.dirty

    core.flush()
    core.reset_daily_stats()
    assert core.network_writer.dirty
    core.shutdown()

    restarted = DecisionCore(storage=storage, clock=clock)
    restarted.start()
    node = restarted.network.get_hierarchical_oscillator("s1")
    assert node.role_state.test_drives_today == 0
    assert restarted.network.get_hierarchical_oscillator("s3").manager_id == "sm"


def test_same_seed_same_draws(clock):
    context = DealContext(vehicle_price=30_000, down_payment=3_000, term_months=60)
    a = DecisionCore(CoreConfig(seed=11), storage=InMemoryStorage(), clock=clock)
    b = DecisionCore(CoreConfig(seed=11), storage=InMemoryStorage(), clock=clock)
    picks_a = [a.recommend(context).strategy_key for _ in range(20)]
    picks_b = [b.recommend(context).strategy_key for _ in range(20)]
    assert picks_a == picks_b
