"""
End-to-end tests for the generic sample-join estimator.
"""

import numpy as np
import pytest

from samplejoin.core.errors import ConfigurationError, NumericDegenerate, PreconditionViolation
from samplejoin.core.primitives import get_rng
from samplejoin.engine.estimator import SampleJoinEstimator, no_filter, sum_c
from samplejoin.engine.exact import exact_join_aggregate
from samplejoin.engine.materializer import minijoin, sample_partner
from samplejoin.engine.methods import count_rows, linear_h2, uniform_h1, uniform_h2
from samplejoin.sampling import ExactSampler, HeuristicSampler, ReservoirSampler
from samplejoin.schema.relation import Relation
from samplejoin.schema.strata import StratifiedRelation


@pytest.fixture
def small_join():
    r1 = Relation.from_pairs([(1, 1), (1, 2), (2, 1)], name="R1")
    r2 = Relation.from_pairs([(1, 10), (2, 20)], name="R2")
    return r1, r2


@pytest.fixture
def striped_join():
    """Five keys, 20 build tuples and 4 probe tuples per key; C runs 1..20."""
    r1 = Relation.from_pairs([(k, j) for k in range(5) for j in range(20)], name="R1")
    r2 = Relation.from_pairs([(k, 4 * k + j + 1) for k in range(5) for j in range(4)], name="R2")
    return r1, r2


def even_c(a, c):
    return c % 2 == 0


def make_estimator(r1, r2, sampler, **kwargs):
    return SampleJoinEstimator(r1, r2, h1=uniform_h1, h2=kwargs.pop('h2', uniform_h2),
                               sampler=sampler, rng=kwargs.pop('rng', get_rng(0)), **kwargs)


# =============================================================================
# Correctness
# =============================================================================

def test_exact_value_when_m_equals_join_size(small_join):
    r1, r2 = small_join
    # Without replacement and no slack, the whole join is sampled
    estimator = make_estimator(
        r1, r2, ReservoirSampler(rng=get_rng(1)),
        oversampling_factor=1.0, oversampling_constant=0,
    )
    for _ in range(10):
        result = estimator.run(3)
        assert result.estimate == pytest.approx(40.0)
        assert result.draw_size == 3
        assert result.sample_size == 3
        assert result.normalization == 3.0


def test_exact_sampler_is_unbiased(small_join):
    r1, r2 = small_join
    estimator = make_estimator(r1, r2, ExactSampler(rng=get_rng(2)), rng=get_rng(3))
    estimator.recompute_normalization()

    estimates = [estimator.estimate(3, recompute_normalization=False) for _ in range(2000)]
    assert np.mean(estimates) == pytest.approx(40.0, abs=1.0)


def test_filtered_estimator_tracks_filtered_aggregate(striped_join):
    r1, r2 = striped_join
    estimator = make_estimator(r1, r2, ExactSampler(rng=get_rng(4)), rng=get_rng(5),
                               r2_filter=even_c)
    exact = exact_join_aggregate(r1, estimator.strata, sum_c, no_filter, even_c)
    assert exact.selectivity == pytest.approx(0.5)

    estimator.recompute_normalization()
    assert estimator.normalization == pytest.approx(400.0)
    assert estimator.filtered_normalization == pytest.approx(200.0)

    estimates = [
        estimator.estimate(20, filtered_estimator=True, filter_selectivity=exact.selectivity,
                           recompute_normalization=False, recompute_cdf=(i == 0))
        for i in range(1000)
    ]
    assert np.mean(estimates) == pytest.approx(exact.aggregate, rel=0.03)


def even_b(a, b):
    return b % 2 == 0


def test_naive_rescale_uses_retained_sample(striped_join):
    r1, r2 = striped_join
    estimator = make_estimator(r1, r2, ExactSampler(rng=get_rng(16)), rng=get_rng(17),
                               aggregate=count_rows, r1_filter=even_b)
    m = 20

    result = estimator.run(m, filtered_estimator=False, filter_selectivity=0.5)
    assert result.filtered_sample_size == m
    assert result.sample_size > m
    assert result.normalization == pytest.approx(400.0)
    # Every passing tuple contributes f / (h1 * h2) = 1
    assert result.estimate == pytest.approx(result.normalization * m / result.sample_size)


def test_naive_estimator_with_independent_filter(striped_join):
    r1, r2 = striped_join
    estimator = make_estimator(r1, r2, ExactSampler(rng=get_rng(18)), rng=get_rng(19),
                               r1_filter=even_b)
    exact = exact_join_aggregate(r1, estimator.strata, sum_c, even_b, no_filter)
    assert exact.aggregate == pytest.approx(2100.0)

    estimator.recompute_normalization()
    estimates = [
        estimator.estimate(50, filtered_estimator=False, filter_selectivity=exact.selectivity,
                           recompute_normalization=False)
        for _ in range(500)
    ]
    assert np.mean(estimates) == pytest.approx(exact.aggregate, rel=0.04)


def test_weighted_count_estimates_join_size(striped_join):
    r1, r2 = striped_join
    estimator = SampleJoinEstimator(
        r1, r2, h1=uniform_h1, h2=linear_h2, sampler=ExactSampler(rng=get_rng(6)),
        aggregate=count_rows, rng=get_rng(7),
    )
    estimator.recompute_normalization()
    # W = 20 build tuples per key times the summed C of that key's stratum
    assert estimator.normalization == pytest.approx(20 * sum(range(1, 21)))

    estimates = [estimator.estimate(20, recompute_normalization=False) for _ in range(1000)]
    assert np.mean(estimates) == pytest.approx(400.0, rel=0.05)


def test_heuristic_sampler_end_to_end(striped_join):
    r1, r2 = striped_join
    estimator = make_estimator(r1, r2, HeuristicSampler(rng=get_rng(8)),
                               oversampling_constant=0)
    result = estimator.run(5)
    assert result.filtered_sample_size == 5
    assert result.estimate > 0


# =============================================================================
# Preconditions and degenerate inputs
# =============================================================================

def test_overstated_selectivity_raises_precondition_violation():
    r1 = Relation.from_pairs([(0, b) for b in range(1000)], name="R1")
    r2 = Relation.from_pairs([(0, 1.0)], name="R2")
    estimator = make_estimator(r1, r2, ExactSampler(rng=get_rng(9)),
                               r1_filter=lambda a, b: b % 10 == 0)

    with pytest.raises(PreconditionViolation) as excinfo:
        estimator.run(50, filtered_estimator=True, filter_selectivity=1.0)
    assert excinfo.value.stage == "filter"
    assert excinfo.value.required == 50
    assert excinfo.value.available < 50


def test_unmatched_keys_raise_numeric_degenerate():
    r1 = Relation.from_pairs([(5, 1), (6, 1)], name="R1")
    r2 = Relation.from_pairs([(1, 10)], name="R2")
    estimator = make_estimator(r1, r2, ExactSampler(rng=get_rng(0)))
    with pytest.raises(NumericDegenerate):
        estimator.run(1)


def test_filter_rejecting_everything_raises_numeric_degenerate(small_join):
    r1, r2 = small_join
    estimator = make_estimator(r1, r2, ExactSampler(rng=get_rng(0)),
                               r2_filter=lambda a, c: False)
    with pytest.raises(NumericDegenerate):
        estimator.run(1, filtered_estimator=True)


def test_sample_size_bounds(small_join):
    r1, r2 = small_join
    estimator = make_estimator(r1, r2, ExactSampler(rng=get_rng(0)))
    with pytest.raises(ConfigurationError):
        estimator.run(0)
    with pytest.raises(ConfigurationError):
        estimator.run(4)
    with pytest.raises(ConfigurationError):
        estimator.run(1, filter_selectivity=0.0)


def test_invalid_oversampling_parameters(small_join):
    r1, r2 = small_join
    with pytest.raises(ConfigurationError):
        make_estimator(r1, r2, ExactSampler(), oversampling_factor=0.9)
    with pytest.raises(ConfigurationError):
        make_estimator(r1, r2, ExactSampler(), oversampling_constant=-1)


def test_draw_size(small_join):
    r1, r2 = small_join
    estimator = make_estimator(r1, r2, ExactSampler(),
                               oversampling_factor=1.5, oversampling_constant=7)
    assert estimator.draw_size(10) == 7 + 15
    assert estimator.draw_size(10, 0.5) == 7 + 30
    assert estimator.draw_size(3, 0.25) == 7 + 18


# =============================================================================
# Normalization cache
# =============================================================================

def test_empty_cache_without_recompute_raises(small_join):
    r1, r2 = small_join
    estimator = make_estimator(r1, r2, ExactSampler(rng=get_rng(0)))
    with pytest.raises(ConfigurationError):
        estimator.run(1, recompute_normalization=False)


def test_cache_reuse_is_idempotent(small_join):
    r1, r2 = small_join
    estimator = make_estimator(r1, r2, ExactSampler(rng=get_rng(10)))

    first = estimator.run(2, recompute_cdf=True)
    weights = estimator.cache.sample_weights
    cdf = estimator.cache.cdf
    assert cdf is not None
    np.testing.assert_allclose(weights, [1.0, 1.0, 1.0])

    second = estimator.run(2, recompute_normalization=False)
    assert second.normalization == first.normalization
    assert second.filtered_normalization == first.filtered_normalization
    assert second.cache_version == first.cache_version
    assert estimator.cache.sample_weights is weights
    assert estimator.cache.cdf is cdf

    third = estimator.run(2)
    assert third.cache_version == first.cache_version + 1
    assert estimator.cache.cdf is None


def test_cdf_deferred_for_samplers_without_cdf(small_join):
    r1, r2 = small_join
    estimator = make_estimator(r1, r2, ReservoirSampler(rng=get_rng(0)),
                               oversampling_factor=1.0, oversampling_constant=0)
    estimator.run(2, recompute_cdf=True)
    assert estimator.cache.cdf is None

    with pytest.raises(ConfigurationError):
        make_estimator(r1, r2, ExactSampler()).recompute_cdf()


def test_reconfigure_invalidates_cache(small_join):
    r1, r2 = small_join
    estimator = make_estimator(r1, r2, ExactSampler(rng=get_rng(11)))
    estimator.recompute_normalization()
    estimator.recompute_cdf()

    estimator.reconfigure(sampler=ExactSampler(rng=get_rng(12)))
    assert estimator.cache.is_valid
    assert estimator.cache.cdf is None

    estimator.reconfigure(h2=linear_h2)
    assert not estimator.cache.is_valid
    with pytest.raises(ConfigurationError):
        estimator.run(1, recompute_normalization=False)

    estimator.recompute_normalization()
    assert estimator.normalization == pytest.approx(10 + 10 + 20)

    with pytest.raises(ConfigurationError):
        estimator.reconfigure(r1=r2)


def test_negative_h1_rejected(small_join):
    r1, r2 = small_join
    estimator = SampleJoinEstimator(r1, r2, h1=lambda a, b: -1.0, h2=uniform_h2,
                                    sampler=ExactSampler())
    with pytest.raises(ConfigurationError):
        estimator.recompute_normalization()


def test_relations_are_not_mutated(small_join):
    r1, r2 = small_join
    before = (r1.to_pairs(), r2.to_pairs())
    estimator = make_estimator(r1, r2, ExactSampler(rng=get_rng(13)))
    for _ in range(5):
        estimator.run(3)
    assert (r1.to_pairs(), r2.to_pairs()) == before


# =============================================================================
# Materializer
# =============================================================================

def test_minijoin_keeps_order_and_keys(striped_join):
    _, r2 = striped_join
    strata = StratifiedRelation(r2)
    build = [(3, 'x'), (0, 'y'), (3, 'z')]
    sample = minijoin(build, strata, get_rng(14), strata.weigh(linear_h2))

    assert [(a, b) for a, b, _ in sample] == build
    for a, _, c in sample:
        assert (a, c) in strata[a]


def test_minijoin_missing_stratum(striped_join):
    _, r2 = striped_join
    with pytest.raises(PreconditionViolation) as excinfo:
        minijoin([(99, 0)], StratifiedRelation(r2), get_rng(0))
    assert excinfo.value.stage == "materialize"


def test_partner_draw_follows_weights():
    stratum = [(0, 1.0), (0, 3.0)]
    cdf = np.array([1.0, 4.0])
    rng = get_rng(15)
    heavy = sum(sample_partner(stratum, rng, cdf)[1] == 3.0 for _ in range(4000))
    assert heavy / 4000 == pytest.approx(0.75, abs=0.03)
