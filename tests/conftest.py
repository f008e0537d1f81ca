import numpy as np
import pytest

from problems.tsp import TSPInstance


@pytest.fixture
def square():
    """Unit square corners, row order (0,0), (1,0), (1,1), (0,1)."""
    return TSPInstance.from_coordinates(
        [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)],
        names=["A", "B", "C", "D"],
        name="square"
    )


@pytest.fixture
def pentagon():
    return TSPInstance.random_euclidean(5, seed=7)


@pytest.fixture
def coefficients():
    return 2.0, 3.0, 0.5, 1.5


@pytest.fixture
def rng():
    return np.random.RandomState(1234)
