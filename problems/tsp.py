"""
TSP Problem Implementation for the Hopfield TSP solver
Provides cities, problem instances, tour encoding/decoding and tour length
evaluation used by the Hopfield network in methods/neural.py.
"""

import math
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from utils import setup_logger

logger = setup_logger("tsp_problem")


# ==================== ERRORS ====================

class MalformedInputError(ValueError):
    """Raised when cities, states or matrices do not fit the problem size."""


class InvalidTourError(ValueError):
    """Raised when a state matrix does not decode into a permutation tour."""

    def __init__(
        self,
        message: str,
        partial_tour: Optional[List[Optional["City"]]] = None,
        empty_rows: Optional[List[int]] = None,
        crowded_rows: Optional[List[int]] = None,
        unassigned_positions: Optional[List[int]] = None,
        overwritten_positions: Optional[List[int]] = None
    ):
        super().__init__(message)
        self.partial_tour = partial_tour or []
        self.empty_rows = empty_rows or []
        self.crowded_rows = crowded_rows or []
        self.unassigned_positions = unassigned_positions or []
        self.overwritten_positions = overwritten_positions or []


# ==================== CITY MODEL ====================

@dataclass(frozen=True)
class City:
    name: str
    x: float
    y: float


def distance(a: City, b: City) -> float:
    """Euclidean distance between two cities."""
    dx = a.x - b.x
    dy = a.y - b.y
    return math.sqrt(dx * dx + dy * dy)


# ==================== PROBLEM INSTANCE ====================

class TSPInstance:
    """Ordered, fixed-size set of cities with a cached distance matrix."""

    def __init__(self, cities: Sequence[City], name: str = "tsp"):
        if not cities:
            raise MalformedInputError("TSP instance needs at least one city")

        self.name = name
        self.cities: Tuple[City, ...] = tuple(cities)
        self.n_cities = len(self.cities)

        coords = np.array([[c.x, c.y] for c in self.cities], dtype=float)
        diff = coords[:, None, :] - coords[None, :, :]
        self.distance_matrix = np.sqrt(np.sum(diff ** 2, axis=-1))
        self.distance_matrix.flags.writeable = False

        logger.info(f"Loaded TSP instance '{name}' with {self.n_cities} cities")

    def __len__(self) -> int:
        return self.n_cities

    def __repr__(self) -> str:
        return f"TSPInstance(name={self.name!r}, n_cities={self.n_cities})"

    @classmethod
    def from_coordinates(
        cls,
        coords: Union[np.ndarray, Sequence[Sequence[float]]],
        names: Optional[Sequence[str]] = None,
        name: str = "tsp"
    ) -> 'TSPInstance':
        """Build an instance from an (N, 2) array of coordinates."""
        coords = np.asarray(coords, dtype=float)
        if coords.ndim != 2 or coords.shape[1] != 2:
            raise MalformedInputError(f"Coordinates must have shape (N, 2), got {coords.shape}")
        if names is None:
            names = [f"City{k}" for k in range(len(coords))]
        if len(names) != len(coords):
            raise MalformedInputError(
                f"Got {len(names)} names for {len(coords)} coordinates"
            )

        cities = [City(str(n), float(x), float(y)) for n, (x, y) in zip(names, coords)]
        return cls(cities, name=name)

    @classmethod
    def from_file(cls, filepath: Union[str, Path], name: Optional[str] = None) -> 'TSPInstance':
        """Load cities from a CSV file with name, x, y columns."""
        filepath = Path(filepath)
        df = pd.read_csv(filepath)

        missing = {'name', 'x', 'y'} - set(df.columns)
        if missing:
            raise MalformedInputError(f"City file {filepath} is missing columns: {sorted(missing)}")

        return cls.from_coordinates(
            df[['x', 'y']].to_numpy(dtype=float),
            names=df['name'].astype(str).tolist(),
            name=name or filepath.stem
        )

    @classmethod
    def random_euclidean(
        cls,
        n_cities: int,
        seed: Optional[int] = None,
        name: str = "Random"
    ) -> 'TSPInstance':
        """Generate random Euclidean TSP instance on a 100x100 square."""
        rng = np.random.RandomState(seed) if seed is not None else np.random
        coords = rng.uniform(0, 100, size=(n_cities, 2))
        return cls.from_coordinates(coords, name=f"{name}{n_cities}")

    def distance(self, X: int, Y: int) -> float:
        return float(self.distance_matrix[X, Y])

    def index_of(self, city: City) -> int:
        try:
            return self.cities.index(city)
        except ValueError:
            raise MalformedInputError(f"City {city.name!r} is not part of instance '{self.name}'")

    def check_state(self, state: Union[np.ndarray, Sequence[Sequence[int]]]) -> np.ndarray:
        """
        Validate a city x position state matrix and return it as an int array.

        Raises:
            MalformedInputError: if the shape is not (N, N) or entries are not 0/1
        """
        state = np.asarray(state)
        n = self.n_cities
        if state.shape != (n, n):
            raise MalformedInputError(f"State matrix must have shape ({n}, {n}), got {state.shape}")
        if not np.isin(state, (0, 1)).all():
            raise MalformedInputError("State matrix entries must be 0 or 1")
        return state.astype(int)

    def check_weights(self, weights: np.ndarray) -> np.ndarray:
        weights = np.asarray(weights, dtype=float)
        size = self.n_cities * self.n_cities
        if weights.shape != (size, size):
            raise MalformedInputError(
                f"Weight matrix must have shape ({size}, {size}), got {weights.shape}"
            )
        return weights


# ==================== ENCODING / DECODING ====================

def is_permutation_matrix(state: np.ndarray) -> bool:
    """True when every row and every column holds exactly one active neuron."""
    state = np.asarray(state)
    if state.ndim != 2 or state.shape[0] != state.shape[1]:
        return False
    return bool(
        np.isin(state, (0, 1)).all()
        and (state.sum(axis=0) == 1).all()
        and (state.sum(axis=1) == 1).all()
    )


def encode_tour(instance: TSPInstance, tour: Sequence[Union[City, int]]) -> np.ndarray:
    """Encode a tour (cities or city indices, in visiting order) as a permutation state."""
    n = instance.n_cities
    if len(tour) != n:
        raise MalformedInputError(f"Tour must visit {n} cities, got {len(tour)}")

    state = np.zeros((n, n), dtype=int)
    for position, stop in enumerate(tour):
        city_idx = instance.index_of(stop) if isinstance(stop, City) else int(stop)
        if not 0 <= city_idx < n:
            raise MalformedInputError(f"City index {city_idx} out of range")
        state[city_idx, position] = 1

    if not is_permutation_matrix(state):
        raise MalformedInputError("Tour must visit each city exactly once")
    return state


def decode_solution(
    instance: TSPInstance,
    state: Union[np.ndarray, Sequence[Sequence[int]]],
    strict: bool = True
) -> List[Optional[City]]:
    """
    Decode a city x position state matrix into the visiting order.

    Each city row is placed at the first position holding a 1. Rows with no
    active neuron, rows with several, and positions left empty or claimed twice
    make the state an invalid tour.

    Args:
        instance: Problem instance the state belongs to
        state: Binary (N, N) matrix, rows = cities, columns = positions
        strict: Raise InvalidTourError on an invalid state instead of
            returning the partial tour (None marks unassigned positions)

    Returns:
        List of cities ordered by tour position
    """
    state = instance.check_state(state)
    n = instance.n_cities

    tour: List[Optional[City]] = [None] * n
    empty_rows = []
    crowded_rows = []
    claims = np.zeros(n, dtype=int)

    for X in range(n):
        active = np.flatnonzero(state[X])
        if active.size == 0:
            empty_rows.append(X)
            continue
        if active.size > 1:
            crowded_rows.append(X)
        j = int(active[0])
        tour[j] = instance.cities[X]
        claims[j] += 1

    unassigned = [j for j in range(n) if tour[j] is None]
    overwritten = [j for j in range(n) if claims[j] > 1]

    if empty_rows or crowded_rows or unassigned or overwritten:
        message = (
            f"State does not encode a valid tour: empty rows {empty_rows}, "
            f"rows with several active neurons {crowded_rows}, "
            f"unassigned positions {unassigned}, overwritten positions {overwritten}"
        )
        if strict:
            raise InvalidTourError(
                message,
                partial_tour=tour,
                empty_rows=empty_rows,
                crowded_rows=crowded_rows,
                unassigned_positions=unassigned,
                overwritten_positions=overwritten
            )
        logger.warning(message)

    return tour


def calculate_tour_length(tour: Sequence[Optional[City]]) -> float:
    """Length of the closed tour visiting the cities in order and returning to the start."""
    if any(city is None for city in tour):
        raise MalformedInputError("Cannot measure a tour with unassigned positions")

    n = len(tour)
    total = 0.0
    for k in range(n):
        total += distance(tour[k], tour[(k + 1) % n])
    return total


def random_binary_state(n_cities: int, rng: Optional[np.random.RandomState] = None) -> np.ndarray:
    """Uniform random 0/1 state used to seed the network."""
    rng = rng or np.random
    return rng.choice([0, 1], size=(n_cities, n_cities))


def random_permutation_state(n_cities: int, rng: Optional[np.random.RandomState] = None) -> np.ndarray:
    """Random valid tour encoded as a permutation state."""
    rng = rng or np.random
    state = np.zeros((n_cities, n_cities), dtype=int)
    state[np.arange(n_cities), rng.permutation(n_cities)] = 1
    return state
