"""Tests for the adaptive cluster engine."""

import json

import numpy as np
import pytest

from adaptive_core.core.cluster_engine import (
    ClusterEngine,
    ClusterEngineConfig,
    CustomerFeatures,
    normalize_features,
    profile_centroid,
)
from adaptive_core.core.storage import InMemoryStorage


def prime(rng):
    return {
        "fico_score": rng.normal(780, 10),
        "income": rng.normal(150_000, 5_000),
        "down_payment_percent": 0.3,
        "engagement_score": 0.8,
    }


def subprime(rng):
    return {
        "fico_score": rng.normal(500, 10),
        "income": rng.normal(35_000, 3_000),
        "down_payment_percent": 0.05,
        "engagement_score": 0.4,
    }


EXTREME = {
    "fico_score": 300,
    "income": 200_000,
    "down_payment_percent": 1.0,
    "previous_visits": 10,
    "time_on_lot_minutes": 180,
    "engagement_score": 0.0,
    "deal_complexity": 1.0,
    "trade_in_value": 30_000,
    "desired_term": 0,
    "monthly_payment_sensitivity": 0.0,
}


@pytest.fixture
def trained_single_cluster():
    """One cluster fitted to a tight prime profile."""
    rng = np.random.default_rng(17)
    engine = ClusterEngine(ClusterEngineConfig(n_clusters=1), rng=np.random.default_rng(0))
    for _ in range(100):
        engine.process_customer(
            {"fico_score": rng.normal(760, 5), "income": rng.normal(120_000, 1_000), "engagement_score": 0.7}
        )
    return engine


# ── Feature normalization ───────────────────────────────────────────────────


def test_normalize_defaults():
    features = normalize_features({})
    assert features == CustomerFeatures()
    assert features.fico_score == 650
    assert features.desired_term == 60


def test_normalize_accepts_camel_case_and_none():
    features = normalize_features({"ficoScore": 720, "tradeInValue": None, "unknown": 3})
    assert features.fico_score == 720
    assert features.trade_in_value == 0


def test_vector_scaling_and_clipping():
    vec = CustomerFeatures(fico_score=900, income=-5, previous_visits=5, desired_term=42).to_vector()
    assert vec.shape == (10,)
    assert vec[0] == 1.0
    assert vec[1] == 0.0
    assert vec[3] == pytest.approx(0.5)
    assert vec[8] == pytest.approx(0.5)
    assert np.all((vec >= 0) & (vec <= 1))


def test_feature_dim_bounds():
    with pytest.raises(ValueError):
        ClusterEngine(ClusterEngineConfig(feature_dim=11))
    with pytest.raises(ValueError):
        ClusterEngine(ClusterEngineConfig(feature_dim=0))


def test_smaller_feature_dim():
    engine = ClusterEngine(ClusterEngineConfig(feature_dim=4, n_clusters=2), rng=np.random.default_rng(1))
    result = engine.process_customer({"fico_score": 700})
    assert engine.centroids.shape == (2, 4)
    assert result.cluster_name


# ── Segmentation ────────────────────────────────────────────────────────────


def test_two_profiles_separate():
    """Prime and subprime shoppers end up on different centroids."""
    rng = np.random.default_rng(99)
    engine = ClusterEngine(rng=np.random.default_rng(5))
    for _ in range(100):
        engine.process_customer(prime(rng))
        engine.process_customer(subprime(rng))

    fico = [engine.deweighted_centroid(i)[0] for i in range(engine.n_clusters)]
    assert max(fico) > 0.75
    assert min(fico) < 0.45

    names = {c.profile.name for c in engine.get_cluster_summary().clusters}
    assert "Prime Buyers" in names
    assert "Credit Challenged" in names


def test_seeding_uses_first_distinct_points():
    engine = ClusterEngine(ClusterEngineConfig(n_clusters=3), rng=np.random.default_rng(2))
    ids = [engine.process_customer({"fico_score": f}).cluster_id for f in (800, 800, 500, 650)]
    assert ids[0] == 0
    assert ids[1] == 0     # Duplicate joins the existing seed
    assert ids[2] == 1
    assert ids[3] == 2
    assert engine.seeded == 3


def test_repeated_point_moves_centroid_closer():
    engine = ClusterEngine(ClusterEngineConfig(n_clusters=3), rng=np.random.default_rng(4))
    for f in (820, 560, 690):
        engine.process_customer({"fico_score": f, "engagement_score": 0.5})

    point = {"fico_score": 740, "engagement_score": 0.7, "previous_visits": 3}
    distances = []
    for _ in range(20):
        result = engine.process_customer(point)
        assert not result.is_outlier
        distances.append(result.distance)

    assert all(later < earlier for earlier, later in zip(distances, distances[1:]))


def test_result_fields():
    engine = ClusterEngine(rng=np.random.default_rng(0))
    result = engine.process_customer({"fico_score": 720})
    assert 0 <= result.cluster_id < engine.n_clusters
    assert 0.0 <= result.confidence <= 1.0
    assert result.recommended_approach
    assert 0.0 < result.priority_score <= 1.0


def test_profile_rules_first_match():
    values = np.full(10, 0.5)
    values[0], values[1] = 0.8, 0.7
    assert profile_centroid(values).name == "Prime Buyers"

    values = np.full(10, 0.5)
    values[5] = 0.2
    assert profile_centroid(values).name == "Tire Kickers"

    values = np.full(10, 0.5)
    values[0], values[2] = 0.48, 0.4
    assert profile_centroid(values).name == "Cash Strong Buyers"

    assert profile_centroid(np.full(10, 0.45)).name == "Average Shoppers"


# ── Outliers ────────────────────────────────────────────────────────────────


def test_extreme_point_is_outlier(trained_single_cluster):
    engine = trained_single_cluster
    centroids = engine.centroids.copy()
    variances = engine.variances.copy()
    weights = engine.feature_weights.copy()

    result = engine.process_customer(EXTREME)

    assert result.is_outlier
    assert len(result.outlier_reason.split(" | ")) == 3
    assert "significantly different from cluster pattern" in result.outlier_reason
    # Outliers never move the model
    assert np.array_equal(engine.centroids, centroids)
    assert np.array_equal(engine.variances, variances)
    assert np.array_equal(engine.feature_weights, weights)


def test_outliers_are_recorded(trained_single_cluster):
    engine = trained_single_cluster
    engine.process_customer(EXTREME)

    recent = engine.get_recent_outliers(limit=1)
    assert len(recent) == 1
    assert recent[0].cluster_id == 0
    assert recent[0].features["fico_score"] == 300
    assert engine.get_recent_outliers(limit=0) == []


def test_outlier_buffer_is_bounded(trained_single_cluster):
    engine = trained_single_cluster
    engine.config.max_outliers = 5
    for _ in range(12):
        engine.process_customer(EXTREME)
    assert len(engine.outliers) == 5


# ── Reporting ───────────────────────────────────────────────────────────────


def test_cluster_summary_sizes():
    rng = np.random.default_rng(8)
    engine = ClusterEngine(ClusterEngineConfig(window_size=50), rng=np.random.default_rng(8))
    for _ in range(40):
        engine.process_customer(prime(rng))
        engine.process_customer(subprime(rng))

    summary = engine.get_cluster_summary()
    assert summary.total_customers_processed == 80
    assert sum(c.size_estimate for c in summary.clusters) == 50
    assert sum(summary.feature_weights) == pytest.approx(1.0)
    assert all(0.0 <= v <= 1.0 for c in summary.clusters for v in c.centroid)


def test_feature_weights_stay_normalized():
    rng = np.random.default_rng(21)
    engine = ClusterEngine(rng=np.random.default_rng(21))
    for _ in range(60):
        engine.process_customer(prime(rng) if rng.random() < 0.5 else subprime(rng))
        assert engine.feature_weights.sum() == pytest.approx(1.0)
        assert np.all(engine.variances >= engine.config.variance_floor)


def test_reset(trained_single_cluster):
    engine = trained_single_cluster
    engine.process_customer(EXTREME)
    engine.reset()
    assert engine.total_points == 0
    assert engine.outliers == []
    assert engine.window == []
    assert engine.seeded == 0
    assert np.allclose(engine.feature_weights, 0.1)


# ── Persistence ─────────────────────────────────────────────────────────────


def test_state_roundtrip(trained_single_cluster):
    engine = trained_single_cluster
    engine.process_customer(EXTREME)
    storage = InMemoryStorage()
    engine.save_state(storage)

    restored = ClusterEngine(ClusterEngineConfig(n_clusters=1))
    assert restored.load_state(storage)
    assert np.allclose(restored.centroids, engine.centroids)
    assert np.allclose(restored.feature_weights, engine.feature_weights)
    assert restored.total_points == engine.total_points
    assert len(restored.outliers) == len(engine.outliers)
    assert restored.seeded == 1


def test_shape_mismatch_keeps_defaults(trained_single_cluster):
    storage = InMemoryStorage()
    trained_single_cluster.save_state(storage)

    other = ClusterEngine(ClusterEngineConfig(n_clusters=3), rng=np.random.default_rng(0))
    before = other.centroids.copy()
    assert not other.load_state(storage)
    assert np.array_equal(other.centroids, before)


def test_legacy_state_without_seed_count():
    engine = ClusterEngine(ClusterEngineConfig(n_clusters=2, feature_dim=2))
    storage = InMemoryStorage()
    storage.put(
        "cluster_engine",
        json.dumps(
            {
                "centroids": [[0.1, 0.2], [0.3, 0.4]],
                "feature_weights": [0.5, 0.5],
                "total_points": 12,
            }
        ),
    )
    assert engine.load_state(storage)
    assert engine.seeded == 2
    assert np.allclose(engine.variances, 0.1)
    assert engine.total_points == 12
