"""
Hopfield Network for the Traveling Salesman Problem
Builds the synaptic weight matrix from the TSP penalty coefficients, evaluates
the network energy in explicit and quadratic form, and runs the synchronous
weight-driven dynamics or the explicit-form sweep until the energy settles.
"""

import numpy as np
from typing import List, Dict, Optional, Callable, Union
from dataclasses import dataclass, field, asdict, fields
import logging
import time

from utils import setup_logger, validate_parameters
from problems.tsp import (
    TSPInstance,
    MalformedInputError,
    InvalidTourError,
    decode_solution,
    calculate_tour_length,
    random_binary_state
)

logger = setup_logger("neural_methods")

DEFAULT_MAX_ITERATIONS = 1000

SYNCHRONOUS = "synchronous"
EXPLICIT = "explicit"

Observer = Callable[[int, float, np.ndarray], None]


# ==================== CONFIGURATION ====================

@dataclass
class HopfieldConfig:
    """Penalty coefficients and stopping rules for one solving run."""
    A: float = 500.0
    B: float = 500.0
    C: float = 200.0
    D: float = 500.0
    convergence_threshold: float = 1e-6
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    update_rule: str = SYNCHRONOUS

    PARAM_RANGES = {
        'A': {'type': (int, float), 'min': 0.0},
        'B': {'type': (int, float), 'min': 0.0},
        'C': {'type': (int, float), 'min': 0.0},
        'D': {'type': (int, float), 'min': 0.0},
        'convergence_threshold': {'type': (int, float), 'exclusive_min': 0.0},
        'max_iterations': {'type': int, 'min': 0},
        'update_rule': {'type': str, 'options': [SYNCHRONOUS, EXPLICIT]},
    }

    def validate(self) -> 'HopfieldConfig':
        ok, errors = validate_parameters(asdict(self), self.PARAM_RANGES)
        if not ok:
            raise MalformedInputError("; ".join(errors))
        return self

    @classmethod
    def from_dict(cls, params: Dict) -> 'HopfieldConfig':
        """Build a config from a dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(params) - known
        if unknown:
            logger.warning(f"Ignoring unknown Hopfield parameters: {sorted(unknown)}")
        return cls(**{k: v for k, v in params.items() if k in known}).validate()

    @property
    def coefficients(self):
        return self.A, self.B, self.C, self.D


def _check_stopping_rules(convergence_threshold: float, max_iterations: int):
    if not convergence_threshold > 0:
        raise MalformedInputError(f"convergence_threshold must be positive, got {convergence_threshold}")
    if max_iterations < 0:
        raise MalformedInputError(f"max_iterations must be non-negative, got {max_iterations}")


# ==================== WEIGHT MATRIX ====================

def build_weight_matrix(instance: TSPInstance, A: float, B: float, C: float, D: float) -> np.ndarray:
    """
    Build the N^2 x N^2 synaptic weight matrix for a TSP instance.

    Neuron (X, i) means "city X is visited at position i" and lives at flat
    index X*N + i. Between neurons (X, i) and (Y, j):

        W = -A * d_XY * (1 - d_ij)          same city, different positions
            -B * d_ij * (1 - d_XY)          same position, different cities
            -C                              global activity bias
            -D * dist(X, Y) * (d_j,i+1 + d_j,i-1)   adjacent positions

    Adjacency is linear (position N-1 is not coupled back to position 0).
    The upper triangle is mirrored into the lower one and self-connections
    are removed. The returned array is read-only.
    """
    n = instance.n_cities
    dist = instance.distance_matrix

    eye = np.eye(n)
    same_city = eye[:, None, :, None]
    same_pos = eye[None, :, None, :]
    adjacent = (np.eye(n, k=1) + np.eye(n, k=-1))[None, :, None, :]

    W = (
        -A * same_city * (1.0 - same_pos)
        - B * same_pos * (1.0 - same_city)
        - C
        - D * dist[:, None, :, None] * adjacent
    ).reshape(n * n, n * n)

    W = np.triu(W) + np.triu(W, k=1).T
    np.fill_diagonal(W, 0.0)
    W.flags.writeable = False

    logger.debug(f"Built {W.shape[0]}x{W.shape[1]} weight matrix (A={A}, B={B}, C={C}, D={D})")
    return W


def is_symmetric(weights: np.ndarray) -> bool:
    return bool(np.array_equal(weights, weights.T))


# ==================== ENERGY ====================

def objective_sum(instance: TSPInstance, state: np.ndarray) -> float:
    """
    Distance part of the explicit energy:

        sum over X, i, Y != X of 0.5 * dist(X, i) * s[X][Y] * (s[Y][i+1] + s[Y][i-1])

    with positions taken modulo N.
    """
    s = instance.check_state(state).astype(float)
    n = instance.n_cities
    others = 1.0 - np.eye(n)
    neighbours = np.roll(s, -1, axis=1) + np.roll(s, 1, axis=1)
    return float(0.5 * np.sum(instance.distance_matrix * ((s * others) @ neighbours)))


def constraint_energy(instance: TSPInstance, state: np.ndarray, A: float, B: float, C: float) -> float:
    """Row, column and active-count penalties of the explicit energy."""
    s = instance.check_state(state).astype(float)
    n = instance.n_cities
    squares = np.sum(s * s)

    row_pairs = np.sum(s.sum(axis=1) ** 2) - squares
    col_pairs = np.sum(s.sum(axis=0) ** 2) - squares
    active = s.sum()

    return 0.5 * A * row_pairs + 0.5 * B * col_pairs + 0.5 * C * (active - n) ** 2


def adjacency_cost(instance: TSPInstance, state: np.ndarray) -> float:
    """
    Distance coupling seen by the weight matrix:

        sum over X, Y, i of dist(X, Y) * s[X][i] * (s[Y][i+1] + s[Y][i-1])

    where out-of-range positions contribute nothing. Each tour edge is counted
    twice, so a permutation state gives twice its open-path length.
    """
    s = instance.check_state(state).astype(float)
    following = np.zeros_like(s)
    preceding = np.zeros_like(s)
    following[:, :-1] = s[:, 1:]
    preceding[:, 1:] = s[:, :-1]
    return float(np.sum(s * (instance.distance_matrix @ (following + preceding))))


def explicit_energy(instance: TSPInstance, state: np.ndarray, A: float, B: float, C: float, D: float) -> float:
    """
    Network energy written out term by term:

        E = 0.5 * objective_sum + constraint_energy

    D is not applied here; the distance term enters unscaled.
    """
    return 0.5 * objective_sum(instance, state) + constraint_energy(instance, state, A, B, C)


def _quadratic_energy(flat_state: np.ndarray, weights: np.ndarray, C: float, n: int) -> float:
    return float(-0.5 * flat_state @ weights @ flat_state - C * n * flat_state.sum())


def general_energy(
    instance: TSPInstance,
    state: np.ndarray,
    weights: np.ndarray,
    A: float,
    B: float,
    C: float,
    D: float
) -> float:
    """Quadratic-form energy -0.5 * s^T W s - C*N*sum(s) over the flattened state."""
    s = instance.check_state(state).astype(float).ravel()
    W = instance.check_weights(weights)
    return _quadratic_energy(s, W, C, instance.n_cities)


def general_energy_closed_form(
    instance: TSPInstance,
    state: np.ndarray,
    A: float,
    B: float,
    C: float,
    D: float
) -> float:
    """
    Evaluate general_energy without the weight matrix.

    Expanding s^T W s term by term gives, for a binary state with S active
    neurons,

        general_energy = constraint_energy - 0.5*C*(S + N^2) + 0.5*D*adjacency_cost

    which costs O(N^3) instead of O(N^4).
    """
    s = instance.check_state(state).astype(float)
    n = instance.n_cities
    return (
        constraint_energy(instance, s, A, B, C)
        - 0.5 * C * (np.sum(s * s) + n * n)
        + 0.5 * D * adjacency_cost(instance, s)
    )


# ==================== DYNAMICS ====================

@dataclass
class DynamicsResult:
    """Outcome of a dynamics run. `state` is the last state the network produced."""
    state: np.ndarray
    converged: bool
    iterations: int
    energy: float
    energy_history: List[float] = field(default_factory=list)
    stopped: bool = False
    update_rule: str = SYNCHRONOUS


class EnergyRecorder:
    """Observer that keeps the energy (and optionally the state) of every iteration."""

    def __init__(self, keep_states: bool = True):
        self.keep_states = keep_states
        self.iterations: List[int] = []
        self.energies: List[float] = []
        self.states: List[np.ndarray] = []

    def __call__(self, iteration: int, energy: float, state: np.ndarray):
        self.iterations.append(iteration)
        self.energies.append(energy)
        if self.keep_states:
            self.states.append(state.copy())

    def __len__(self) -> int:
        return len(self.energies)


class LoggingObserver:
    """Observer that writes one log line per iteration."""

    def __init__(self, log: Optional[logging.Logger] = None, level: int = logging.DEBUG):
        self.log = log or logger
        self.level = level

    def __call__(self, iteration: int, energy: float, state: np.ndarray):
        self.log.log(self.level, f"Iteration {iteration}: energy={energy:.4f}, active neurons={int(state.sum())}")


def _relax(
    state: np.ndarray,
    step: Callable[[np.ndarray], np.ndarray],
    energy: Callable[[np.ndarray], float],
    convergence_threshold: float,
    max_iterations: int,
    observer: Optional[Observer],
    should_stop: Optional[Callable[[], bool]],
    update_rule: str
) -> DynamicsResult:
    current = state
    current_energy = energy(current)
    history = []
    iterations = 0

    for iteration in range(max_iterations):
        if should_stop is not None and should_stop():
            logger.info(f"{update_rule} dynamics stopped by caller after {iterations} iterations")
            return DynamicsResult(current, False, iterations, current_energy, history, True, update_rule)

        energy_before = current_energy
        current = step(current)
        current_energy = energy(current)
        iterations = iteration + 1
        history.append(current_energy)

        if observer is not None:
            observer(iterations, current_energy, current.copy())

        if abs(current_energy - energy_before) < convergence_threshold:
            logger.info(f"{update_rule} dynamics converged at iteration {iterations} (energy: {current_energy:.4f})")
            return DynamicsResult(current, True, iterations, current_energy, history, False, update_rule)

    logger.warning(f"{update_rule} dynamics did not converge within {max_iterations} iterations")
    return DynamicsResult(current, False, iterations, current_energy, history, False, update_rule)


def run_synchronous_dynamics(
    instance: TSPInstance,
    state: np.ndarray,
    weights: np.ndarray,
    A: float,
    B: float,
    C: float,
    D: float,
    convergence_threshold: float,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    observer: Optional[Observer] = None,
    should_stop: Optional[Callable[[], bool]] = None
) -> DynamicsResult:
    """
    Relax the network with synchronous, weight-driven updates.

    Every neuron reads the same snapshot of the previous state:

        s'[X][i] = 1 if sum_{Y,j} W[X*N+i][Y*N+j] * s[Y][j] >= -C*N else 0

    The loop ends when the quadratic energy changes by less than
    `convergence_threshold`, after `max_iterations` updates, or when
    `should_stop()` returns True between iterations. The caller's state is
    left untouched; the final state is `result.state`.

    Args:
        instance: Problem instance
        state: Initial (N, N) binary state
        weights: Matrix from build_weight_matrix for the same coefficients
        A, B, C, D: Penalty coefficients
        convergence_threshold: Energy change below which the network is stable
        max_iterations: Hard cap on updates
        observer: Called as observer(iteration, energy, state) after each update
        should_stop: Cooperative cancellation check

    Returns:
        DynamicsResult with converged=False if the cap or a stop was hit
    """
    _check_stopping_rules(convergence_threshold, max_iterations)
    n = instance.n_cities
    s0 = instance.check_state(state).copy()
    W = instance.check_weights(weights)
    theta = -C * n

    def step(current: np.ndarray) -> np.ndarray:
        net_input = W @ current.ravel()
        return (net_input >= theta).astype(int).reshape(n, n)

    def energy(current: np.ndarray) -> float:
        return _quadratic_energy(current.ravel().astype(float), W, C, n)

    return _relax(s0, step, energy, convergence_threshold, max_iterations,
                  observer, should_stop, SYNCHRONOUS)


def explicit_sweep(instance: TSPInstance, state: np.ndarray, A: float, B: float, C: float, D: float) -> np.ndarray:
    """
    One in-place pass of the explicit-form update, neuron by neuron in row-major order.

    For neuron (X, i):

        input = A * sum_{j != i} s[X][j]
              + B * sum_{Y != X} s[Y][i]
              + sum_{Y != X} dist(X, Y) * (s[Y][i-1] + s[Y][i+1])
              + C * (S - N)

    and the neuron fires when input > 0. Later neurons already see the new
    values of earlier ones, S included. D is not applied. Works on a copy of
    `state` and returns it.
    """
    s = instance.check_state(state).copy()
    n = instance.n_cities
    dist = instance.distance_matrix
    theta = 0.0
    active = int(s.sum())

    for X in range(n):
        for i in range(n):
            own = s[X, i]
            net_input = A * (s[X].sum() - own)
            net_input += B * (s[:, i].sum() - own)
            net_input += dist[X] @ (s[:, (i - 1) % n] + s[:, (i + 1) % n])
            net_input += C * (active - n)

            new_value = 1 if net_input > theta else 0
            active += new_value - own
            s[X, i] = new_value

    return s


def run_explicit_dynamics(
    instance: TSPInstance,
    state: np.ndarray,
    A: float,
    B: float,
    C: float,
    D: float,
    convergence_threshold: float,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    observer: Optional[Observer] = None,
    should_stop: Optional[Callable[[], bool]] = None
) -> DynamicsResult:
    """Repeat explicit_sweep until the explicit energy settles. Never uses the weight matrix."""
    _check_stopping_rules(convergence_threshold, max_iterations)
    s0 = instance.check_state(state).copy()

    def step(current: np.ndarray) -> np.ndarray:
        return explicit_sweep(instance, current, A, B, C, D)

    def energy(current: np.ndarray) -> float:
        return explicit_energy(instance, current, A, B, C, D)

    return _relax(s0, step, energy, convergence_threshold, max_iterations,
                  observer, should_stop, EXPLICIT)


# ==================== SOLVER ====================

class HopfieldTSPSolver:
    """
    Hopfield Network solver for TSP.
    Runs one relaxation from a given or random initial state and decodes the result.
    """

    def __init__(self, config: Optional[HopfieldConfig] = None, **params):
        self.config = (config or HopfieldConfig(**params)).validate()
        self.name = self.__class__.__name__
        self.weights = None
        self.convergence_history = []
        self.start_time = None
        self.elapsed_time = 0.0
        self.iterations_completed = 0

    def _initialize_convergence_tracking(self):
        """Reset convergence tracking before a new run."""
        self.convergence_history = []
        self.start_time = time.time()
        self.elapsed_time = 0.0
        self.iterations_completed = 0

    def _check_time_limit(self, max_time: Optional[float]) -> bool:
        """Check if time limit has been exceeded."""
        if max_time is None:
            return False
        self.elapsed_time = time.time() - self.start_time
        return self.elapsed_time >= max_time

    def get_parameters(self) -> Dict:
        """Return current parameters."""
        return asdict(self.config)

    def solve(
        self,
        instance: TSPInstance,
        initial_state: Optional[Union[np.ndarray, List[List[int]]]] = None,
        seed: Optional[int] = None,
        observer: Optional[Observer] = None,
        max_time: Optional[float] = None
    ) -> Dict:
        """
        Solve a TSP instance.

        Args:
            instance: Problem instance
            initial_state: (N, N) binary state; random when omitted
            seed: Seed for the random initial state
            observer: Called as observer(iteration, energy, state) after each update
            max_time: Optional time limit in seconds

        Returns:
            Dictionary with the tour (city names, or None when the final state
            is not a permutation), its length, and convergence details
        """
        cfg = self.config
        A, B, C, D = cfg.coefficients
        n = instance.n_cities

        self._initialize_convergence_tracking()

        if initial_state is None:
            state = random_binary_state(n, np.random.RandomState(seed))
        else:
            state = instance.check_state(initial_state)

        recorder = EnergyRecorder(keep_states=False)

        def notify(iteration: int, energy: float, current: np.ndarray):
            recorder(iteration, energy, current)
            if observer is not None:
                observer(iteration, energy, current)

        should_stop = (lambda: self._check_time_limit(max_time)) if max_time is not None else None

        if cfg.update_rule == SYNCHRONOUS:
            self.weights = build_weight_matrix(instance, A, B, C, D)
            dynamics = run_synchronous_dynamics(
                instance, state, self.weights, A, B, C, D,
                cfg.convergence_threshold, cfg.max_iterations,
                observer=notify, should_stop=should_stop
            )
        else:
            dynamics = run_explicit_dynamics(
                instance, state, A, B, C, D,
                cfg.convergence_threshold, cfg.max_iterations,
                observer=notify, should_stop=should_stop
            )

        self.elapsed_time = time.time() - self.start_time
        self.convergence_history = recorder.energies
        self.iterations_completed = dynamics.iterations

        tour = None
        tour_length = None
        invalid_reason = None
        try:
            cities = decode_solution(instance, dynamics.state, strict=True)
            tour = [city.name for city in cities]
            tour_length = calculate_tour_length(cities)
        except InvalidTourError as e:
            invalid_reason = str(e)
            logger.warning(f"Hopfield network did not settle on a valid tour for '{instance.name}'")

        return {
            "method_used": self.name,
            "update_rule": cfg.update_rule,
            "tour": tour,
            "tour_length": tour_length,
            "valid": tour is not None,
            "invalid_reason": invalid_reason,
            "converged": dynamics.converged,
            "stopped": dynamics.stopped,
            "final_energy": dynamics.energy,
            "state": dynamics.state,
            "computation_time": self.elapsed_time,
            "convergence_history": self.convergence_history,
            "iterations_completed": self.iterations_completed
        }


# ==================== EXAMPLE USAGE ====================

if __name__ == "__main__":
    print("=== Hopfield TSP Demo ===\n")

    square = TSPInstance.from_coordinates([(0, 0), (1, 0), (1, 1), (0, 1)], names=list("ABCD"), name="square")
    solver = HopfieldTSPSolver(A=1.0, B=1.0, C=0.5, D=0.2, convergence_threshold=1e-3)
    results = solver.solve(square, seed=42, observer=LoggingObserver(level=logging.INFO))

    print(f"Valid tour:  {results['valid']}")
    print(f"Tour:        {results['tour']}")
    print(f"Tour length: {results['tour_length']}")
    print(f"Converged:   {results['converged']} after {results['iterations_completed']} iterations")
