import numpy as np
import pytest

from methods.neural import (
    build_weight_matrix,
    general_energy,
    explicit_energy,
    run_synchronous_dynamics,
    run_explicit_dynamics,
    explicit_sweep,
    EnergyRecorder,
    LoggingObserver,
    DEFAULT_MAX_ITERATIONS
)
from problems.tsp import TSPInstance, MalformedInputError, random_binary_state


def reference_explicit_sweep(instance, state, A, B, C):
    s = [list(row) for row in state]
    n = instance.n_cities
    for X in range(n):
        for i in range(n):
            value = 0.0
            for j in range(n):
                if i != j:
                    value += A * s[X][j]
            for Y in range(n):
                if X != Y:
                    value += B * s[Y][i]
                    value += instance.distance(X, Y) * (s[Y][(i - 1 + n) % n] + s[Y][(i + 1) % n])
            value += C * (sum(map(sum, s)) - n)
            s[X][i] = 1 if value > 0 else 0
    return np.array(s)


@pytest.fixture
def single_city():
    return TSPInstance.from_coordinates([(5.0, 5.0)], names=["Solo"])


# ==================== SYNCHRONOUS ====================

def test_synchronous_returns_updated_state_not_initial(single_city):
    W = build_weight_matrix(single_city, 1.0, 1.0, 1.0, 1.0)
    initial = np.zeros((1, 1), dtype=int)

    result = run_synchronous_dynamics(single_city, initial, W, 1.0, 1.0, 1.0, 1.0, 1e-6)

    assert result.converged
    assert result.iterations == 2
    assert result.state.tolist() == [[1]]
    assert initial.tolist() == [[0]]
    assert result.energy == pytest.approx(-1.0)


def test_synchronous_is_bounded_by_max_iterations(square):
    # From the empty state every neuron fires, from the full state none does.
    coefficients = (1.0, 1.0, 1.0, 1.0)
    W = build_weight_matrix(square, *coefficients)
    initial = np.zeros((4, 4), dtype=int)

    result = run_synchronous_dynamics(square, initial, W, *coefficients, 1e-6)

    assert not result.converged
    assert result.iterations == DEFAULT_MAX_ITERATIONS
    assert len(result.energy_history) == DEFAULT_MAX_ITERATIONS
    assert np.all(result.state == 0)


def test_synchronous_max_iterations_is_configurable(square, rng):
    coefficients = (1.0, 1.0, 1.0, 1.0)
    W = build_weight_matrix(square, *coefficients)
    for cap in (0, 1, 7):
        result = run_synchronous_dynamics(square, random_binary_state(4, rng), W, *coefficients,
                                          1e-9, max_iterations=cap)
        assert result.iterations <= cap


def test_synchronous_update_thresholds_at_minus_cn(square):
    coefficients = (1.0, 1.0, 1.0, 1.0)
    W = build_weight_matrix(square, *coefficients)

    result = run_synchronous_dynamics(square, np.zeros((4, 4), dtype=int), W, *coefficients,
                                      1e-6, max_iterations=1)

    # Net input is 0 >= -C*N for every neuron.
    assert np.all(result.state == 1)


def test_synchronous_step_matches_weight_rule(pentagon, rng):
    coefficients = (2.0, 2.0, 0.3, 0.05)
    W = build_weight_matrix(pentagon, *coefficients)
    initial = random_binary_state(5, rng)

    result = run_synchronous_dynamics(pentagon, initial, W, *coefficients, 1e-9, max_iterations=1)

    n = pentagon.n_cities
    expected = np.zeros((n, n), dtype=int)
    for X in range(n):
        for i in range(n):
            net = sum(W[X * n + i, Y * n + j] * initial[Y, j] for Y in range(n) for j in range(n))
            expected[X, i] = 1 if net >= -coefficients[2] * n else 0
    assert np.array_equal(result.state, expected)
    assert result.energy == pytest.approx(general_energy(pentagon, expected, W, *coefficients))


def test_synchronous_observer_sees_every_iteration(square, rng):
    coefficients = (1.0, 1.0, 1.0, 1.0)
    W = build_weight_matrix(square, *coefficients)
    recorder = EnergyRecorder()

    result = run_synchronous_dynamics(square, random_binary_state(4, rng), W, *coefficients,
                                      1e-6, max_iterations=12, observer=recorder)

    assert recorder.iterations == list(range(1, result.iterations + 1))
    assert recorder.energies == result.energy_history
    assert np.array_equal(recorder.states[-1], result.state)
    recorder.states[-1][:] = 1 - recorder.states[-1]
    assert not np.array_equal(recorder.states[-1], result.state)


def test_synchronous_does_not_mutate_caller_state(square, rng):
    coefficients = (1.0, 1.0, 1.0, 1.0)
    W = build_weight_matrix(square, *coefficients)
    initial = random_binary_state(4, rng)
    snapshot = initial.copy()

    run_synchronous_dynamics(square, initial, W, *coefficients, 1e-6, max_iterations=5)

    assert np.array_equal(initial, snapshot)


def test_synchronous_cooperative_stop(square):
    coefficients = (1.0, 1.0, 1.0, 1.0)
    W = build_weight_matrix(square, *coefficients)
    calls = []

    def stop_after_three():
        calls.append(1)
        return len(calls) > 3

    result = run_synchronous_dynamics(square, np.zeros((4, 4), dtype=int), W, *coefficients,
                                      1e-6, should_stop=stop_after_three)

    assert result.stopped
    assert not result.converged
    assert result.iterations == 3
    assert np.all(result.state == 1)


def test_synchronous_rejects_malformed_input(square, pentagon):
    W = build_weight_matrix(square, 1.0, 1.0, 1.0, 1.0)
    with pytest.raises(MalformedInputError):
        run_synchronous_dynamics(square, np.zeros((3, 3), dtype=int), W, 1.0, 1.0, 1.0, 1.0, 1e-6)
    with pytest.raises(MalformedInputError):
        run_synchronous_dynamics(pentagon, np.zeros((5, 5), dtype=int), W, 1.0, 1.0, 1.0, 1.0, 1e-6)
    with pytest.raises(MalformedInputError):
        run_synchronous_dynamics(square, np.zeros((4, 4), dtype=int), W, 1.0, 1.0, 1.0, 1.0, 0.0)
    with pytest.raises(MalformedInputError):
        run_synchronous_dynamics(square, np.zeros((4, 4), dtype=int), W, 1.0, 1.0, 1.0, 1.0, 1e-6,
                                 max_iterations=-1)


def test_logging_observer_writes_one_line_per_iteration(square, caplog):
    import logging

    coefficients = (1.0, 1.0, 1.0, 1.0)
    W = build_weight_matrix(square, *coefficients)
    log = logging.getLogger("hopfield_test_observer")
    log.propagate = True

    with caplog.at_level(logging.INFO, logger="hopfield_test_observer"):
        run_synchronous_dynamics(square, np.zeros((4, 4), dtype=int), W, *coefficients, 1e-6,
                                 max_iterations=4, observer=LoggingObserver(log, level=logging.INFO))

    lines = [r for r in caplog.records if r.name == "hopfield_test_observer"]
    assert len(lines) == 4
    assert "active neurons=16" in lines[0].getMessage()


# ==================== EXPLICIT ====================

def test_explicit_sweep_matches_in_place_reference(pentagon, rng):
    A, B, C, D = 0.4, 0.7, 1.3, 2.0
    for _ in range(5):
        state = random_binary_state(5, rng)
        expected = reference_explicit_sweep(pentagon, state, A, B, C)
        assert np.array_equal(explicit_sweep(pentagon, state, A, B, C, D), expected)


def test_explicit_sweep_leaves_input_untouched(square, rng):
    state = random_binary_state(4, rng)
    snapshot = state.copy()
    explicit_sweep(square, state, 1.0, 1.0, 1.0, 1.0)
    assert np.array_equal(state, snapshot)


def test_explicit_sweep_ignores_distance_scale(pentagon, rng):
    state = random_binary_state(5, rng)
    assert np.array_equal(explicit_sweep(pentagon, state, 1.0, 1.0, 0.5, 0.0),
                          explicit_sweep(pentagon, state, 1.0, 1.0, 0.5, 50.0))


def test_explicit_threshold_is_strictly_positive(square):
    # With C = 0 an empty network sees zero input everywhere: the explicit rule
    # keeps it silent while the weight-driven rule (input >= -C*N = 0) fires.
    empty = np.zeros((4, 4), dtype=int)
    assert np.all(explicit_sweep(square, empty, 1.0, 1.0, 0.0, 1.0) == 0)

    W = build_weight_matrix(square, 1.0, 1.0, 0.0, 1.0)
    sync = run_synchronous_dynamics(square, empty, W, 1.0, 1.0, 0.0, 1.0, 1e-6, max_iterations=1)
    assert np.all(sync.state == 1)


def test_explicit_dynamics_converges_on_fixed_point(square):
    result = run_explicit_dynamics(square, np.zeros((4, 4), dtype=int), 1.0, 1.0, 1.0, 1.0, 1e-6)

    assert result.converged
    assert result.iterations == 1
    assert result.update_rule == "explicit"
    assert result.energy == pytest.approx(explicit_energy(square, result.state, 1.0, 1.0, 1.0, 1.0))


def test_explicit_dynamics_is_bounded(pentagon, rng):
    recorder = EnergyRecorder(keep_states=False)
    result = run_explicit_dynamics(pentagon, random_binary_state(5, rng), 1.0, 1.0, 0.5, 1.0, 1e-9,
                                   max_iterations=25, observer=recorder)

    assert result.iterations <= 25
    assert len(recorder) == result.iterations
    assert recorder.states == []


def test_explicit_dynamics_returns_last_sweep(pentagon, rng):
    state = random_binary_state(5, rng)
    result = run_explicit_dynamics(pentagon, state, 0.4, 0.7, 1.3, 2.0, 1e-9, max_iterations=1)
    assert np.array_equal(result.state, explicit_sweep(pentagon, state, 0.4, 0.7, 1.3, 2.0))
