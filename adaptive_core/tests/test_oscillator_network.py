"""Tests for the oscillator coordination network."""

import numpy as np
import pytest

from adaptive_core.core.oscillator_network import (
    NetworkConfig,
    OscillatorNetwork,
    coherence_status,
)
from adaptive_core.core.phase_oscillator import TWO_PI
from adaptive_core.core.storage import InMemoryStorage


@pytest.fixture
def network():
    return OscillatorNetwork(rng=np.random.default_rng(42))


# ── Synchronization ─────────────────────────────────────────────────────────


def test_two_oscillators_synchronize():
    """Two equal-skill salespeople pulled together by coupling."""
    net = OscillatorNetwork(NetworkConfig(coupling_strength=0.3))
    net.add_salesperson("a", "Alice", skill_level=0.5, natural_frequency=1.0, phase=0.0)
    net.add_salesperson("b", "Bob", skill_level=0.5, natural_frequency=1.0, phase=2.0)

    start = net.compute_coherence()
    for _ in range(100):
        net.update(0.1)

    assert net.compute_coherence() > start
    assert net.compute_coherence() > 0.9


def test_phases_stay_wrapped(network):
    for i in range(6):
        network.add_salesperson(f"s{i}", f"S{i}", skill_level=0.1 * i + 0.2, natural_frequency=1.0 + 0.3 * i)
    network.update_workload("s3", 8)
    for _ in range(500):
        network.update(0.37)
        for osc in network.get_all_oscillators():
            assert 0.0 <= osc.phase < TWO_PI


def test_workload_slows_phase():
    net = OscillatorNetwork(NetworkConfig(coupling_strength=0.0))
    net.add_salesperson("idle", "Idle", phase=0.0)
    net.add_salesperson("busy", "Busy", phase=0.0)
    net.update_workload("busy", 10)
    net.update(0.5)
    assert net.get_oscillator("idle").phase == pytest.approx(0.5)
    assert net.get_oscillator("busy").phase == pytest.approx(0.25)


def test_update_empty_network_is_noop():
    net = OscillatorNetwork()
    net.update()
    assert net.time == 0.0
    assert net.history == []


def test_update_rejects_negative_dt(network):
    network.add_salesperson("a", "A")
    with pytest.raises(ValueError):
        network.update(-0.1)


def test_history_is_bounded():
    net = OscillatorNetwork(NetworkConfig(history_length=10), rng=np.random.default_rng(1))
    net.add_salesperson("a", "A")
    for _ in range(25):
        net.update()
    assert len(net.history) == 10
    assert net.history[-1].time == pytest.approx(2.5)
    assert set(net.history[-1].phases) == {"a"}


# ── Coherence ───────────────────────────────────────────────────────────────


def test_coherence_empty_is_zero():
    assert OscillatorNetwork().compute_coherence() == 0.0


def test_coherence_status_mapping():
    assert coherence_status(0.9) == "excellent"
    assert coherence_status(0.7) == "good"
    assert coherence_status(0.5) == "needs_attention"
    assert coherence_status(0.4) == "critical"


# ── Lead assignment ─────────────────────────────────────────────────────────


def test_assign_lead_prefers_ready_and_free():
    net = OscillatorNetwork()
    net.add_salesperson("busy", "Busy", phase=np.pi)
    net.add_salesperson("ready", "Ready", phase=0.0)
    net.update_workload("busy", 4)
    assert net.assign_new_lead() == "ready"


def test_assign_lead_ties_go_to_first_inserted():
    net = OscillatorNetwork()
    net.add_salesperson("first", "First", phase=0.0)
    net.add_salesperson("second", "Second", phase=0.0)
    assert net.assign_new_lead() == "first"


def test_assign_lead_empty_is_none():
    assert OscillatorNetwork().assign_new_lead() is None


# ── Bottlenecks and mentoring ───────────────────────────────────────────────


def test_detect_bottleneck_overloaded():
    net = OscillatorNetwork()
    net.add_salesperson("a", "A", phase=0.0)
    net.add_salesperson("b", "B", phase=0.0)
    net.add_salesperson("c", "C", phase=np.pi)
    net.update_workload("c", 6)

    bottlenecks = net.detect_bottlenecks()
    assert [b.salesperson_id for b in bottlenecks] == ["c"]
    assert bottlenecks[0].issue == "Overloaded - too many active deals"
    assert bottlenecks[0].phase_difference == pytest.approx(np.pi)


def test_detect_bottleneck_far_behind():
    net = OscillatorNetwork()
    net.add_salesperson("a", "A", phase=0.0)
    net.add_salesperson("b", "B", phase=0.0)
    net.add_salesperson("c", "C", phase=np.pi)
    assert net.detect_bottlenecks()[0].issue == "Significantly behind team rhythm"


def test_detect_bottleneck_idle_after_time():
    net = OscillatorNetwork(NetworkConfig(coupling_strength=0.0))
    net.add_salesperson("a", "A", phase=0.0, natural_frequency=0.0)
    net.add_salesperson("b", "B", phase=0.0, natural_frequency=0.0)
    net.add_salesperson("c", "C", phase=np.pi, natural_frequency=0.0)
    for _ in range(50):
        net.update(0.1)
    assert net.time > 4
    assert net.detect_bottlenecks()[0].issue == "Slow day - no deals closed yet"


def test_no_bottlenecks_when_synchronized():
    net = OscillatorNetwork()
    for i in range(4):
        net.add_salesperson(f"s{i}", f"S{i}", phase=1.0)
    assert net.detect_bottlenecks() == []


def test_recommend_mentoring_pair():
    net = OscillatorNetwork()
    net.add_salesperson("senior", "Senior", skill_level=0.9, phase=1.0)
    net.add_salesperson("junior", "Junior", skill_level=0.5, phase=0.0)

    recs = net.recommend_mentoring()
    assert len(recs) == 1
    assert recs[0].mentor_id == "senior"
    assert recs[0].mentee_id == "junior"
    assert recs[0].skill_gap == pytest.approx(0.4)


def test_recommend_mentoring_top_three_by_gap():
    net = OscillatorNetwork()
    net.add_salesperson("m", "Mentor", skill_level=1.0, phase=1.0)
    for i, skill in enumerate([0.2, 0.3, 0.4, 0.5]):
        net.add_salesperson(f"j{i}", f"J{i}", skill_level=skill, phase=0.0)

    recs = net.recommend_mentoring()
    assert len(recs) == 3
    assert [r.mentee_id for r in recs] == ["j0", "j1", "j2"]


def test_recommend_mentoring_needs_two():
    net = OscillatorNetwork()
    net.add_salesperson("a", "A")
    assert net.recommend_mentoring() == []


# ── Event hooks ─────────────────────────────────────────────────────────────


def test_record_deal_closed():
    net = OscillatorNetwork()
    net.add_salesperson("a", "A", phase=0.0)
    net.update_workload("a", 2)
    net.record_deal_closed("a")

    osc = net.get_oscillator("a")
    assert osc.deals_closed_today == 1
    assert osc.active_deals == 1
    assert osc.phase == pytest.approx(np.pi / 2)


def test_record_deal_closed_floors_workload():
    net = OscillatorNetwork()
    net.add_salesperson("a", "A", phase=0.0)
    net.record_deal_closed("a")
    assert net.get_oscillator("a").active_deals == 0


def test_unknown_ids_are_noops(network):
    network.update_workload("ghost", 3)
    network.record_deal_closed("ghost")
    network.remove_salesperson("ghost")
    assert network.n == 0


def test_duplicate_id_rejected(network):
    network.add_salesperson("a", "A")
    with pytest.raises(ValueError):
        network.add_salesperson("a", "Again")


def test_team_status_member_labels():
    net = OscillatorNetwork()
    net.add_salesperson("over", "Over", phase=0.0)
    net.add_salesperson("idle", "Idle", phase=0.0)
    net.add_salesperson("star", "Star", phase=0.0)
    net.add_salesperson("norm", "Norm", phase=0.0)
    net.update_workload("over", 7)
    net.record_deal_closed("star")
    net.record_deal_closed("star")
    net.update_workload("norm", 1)

    status = net.get_team_status()
    labels = {m.id: m.status for m in status.team_members}
    assert labels == {"over": "overloaded", "idle": "idle", "star": "crushing_it", "norm": "normal"}
    assert status.total_salespeople == 4


def test_reset_clears_day(network):
    network.add_salesperson("a", "A")
    network.update_workload("a", 3)
    network.record_deal_closed("a")
    network.update()
    network.reset()

    osc = network.get_oscillator("a")
    assert osc.active_deals == 0
    assert osc.deals_closed_today == 0
    assert network.time == 0.0
    assert network.coherence_history() == []


# ── Persistence ─────────────────────────────────────────────────────────────


def test_save_and_load_roundtrip(network):
    network.add_salesperson("a", "Alice", skill_level=0.8)
    network.add_salesperson("b", "Bob", skill_level=0.4)
    network.update_workload("b", 2)
    for _ in range(10):
        network.update()

    storage = InMemoryStorage()
    network.save_state(storage)

    restored = OscillatorNetwork()
    assert restored.load_state(storage)
    assert restored.time == pytest.approx(network.time)
    for id, osc in network.oscillators.items():
        assert restored.get_oscillator(id).phase == pytest.approx(osc.phase)
        assert restored.get_oscillator(id).active_deals == osc.active_deals
    assert restored.coherence_history() == pytest.approx(network.coherence_history())


def test_saved_coherence_history_is_trimmed():
    net = OscillatorNetwork(rng=np.random.default_rng(3))
    net.add_salesperson("a", "A")
    for _ in range(150):
        net.update()
    assert len(net.get_state()["coherence_history"]) == 100


def test_load_missing_state_keeps_defaults():
    net = OscillatorNetwork()
    assert not net.load_state(InMemoryStorage())
    assert net.n == 0
