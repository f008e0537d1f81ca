"""
Utility functions for the Hopfield TSP solver
Provides logging setup, parameter validation, statistical summaries,
result persistence and energy convergence plots.
"""

import os
import json
import numpy as np
import matplotlib.pyplot as plt
from scipy import stats
from typing import List, Dict, Tuple, Optional
import logging
from datetime import datetime


# ==================== LOGGING SETUP ====================

LOG_FORMATTER = logging.Formatter(
    '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)

PROJECT_LOGGERS = ["hopfield_main", "neural_methods", "tsp_problem", "experiments"]


def setup_logger(name: str = "hopfield_tsp", log_file: Optional[str] = None) -> logging.Logger:
    """Configure logger with console and optional file output.

    Calling it again on a configured logger only adds the file handler,
    once per file.
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)

    if not logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(LOG_FORMATTER)
        logger.addHandler(console_handler)

    if log_file:
        log_path = os.path.abspath(log_file)
        already_attached = any(
            isinstance(h, logging.FileHandler) and h.baseFilename == log_path
            for h in logger.handlers
        )
        if not already_attached:
            log_dir = os.path.dirname(log_path)
            os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(log_path)
            file_handler.setFormatter(LOG_FORMATTER)
            logger.addHandler(file_handler)

    return logger


def log_to_file(log_file: str, names: Optional[List[str]] = None):
    """Send the project loggers (or the given ones) to `log_file` as well."""
    for name in names or PROJECT_LOGGERS:
        setup_logger(name, log_file=log_file)


# ==================== PARAMETER VALIDATION ====================

def validate_parameters(params: Dict, param_ranges: Dict) -> Tuple[bool, List[str]]:
    """Validate method parameters against allowed ranges/types."""
    errors = []

    for param_name, expected in param_ranges.items():
        if param_name not in params:
            errors.append(f"Missing parameter: {param_name}")
            continue

        value = params[param_name]

        # Type checking
        if 'type' in expected:
            expected_type = expected['type']
            if not isinstance(value, expected_type) or isinstance(value, bool):
                type_name = getattr(expected_type, '__name__', str(expected_type))
                errors.append(f"Parameter {param_name} should be {type_name}, got {type(value).__name__}")
                continue

        # Range checking for numeric types
        if isinstance(value, (int, float)):
            if 'min' in expected and value < expected['min']:
                errors.append(f"Parameter {param_name}={value} below minimum {expected['min']}")
            if 'exclusive_min' in expected and value <= expected['exclusive_min']:
                errors.append(f"Parameter {param_name}={value} must be greater than {expected['exclusive_min']}")
            if 'max' in expected and value > expected['max']:
                errors.append(f"Parameter {param_name}={value} above maximum {expected['max']}")

        # Options checking
        if 'options' in expected and value not in expected['options']:
            errors.append(f"Parameter {param_name}={value} not in allowed options {expected['options']}")

    return len(errors) == 0, errors


# ==================== STATISTICAL ANALYSIS ====================

def compute_statistics(values: List[float]) -> Dict[str, float]:
    """Compute mean, std, min, max, and 95% confidence half-width."""
    arr = np.asarray(values, dtype=float)
    n = len(arr)
    if n == 0:
        return {'mean': float('nan'), 'std': 0.0, 'min': float('nan'),
                'max': float('nan'), 'ci_95': 0.0, 'n': 0}

    mean = float(np.mean(arr))
    std = float(np.std(arr, ddof=1)) if n > 1 else 0.0
    ci = float(stats.t.ppf(0.975, n - 1) * std / np.sqrt(n)) if n > 1 else 0.0

    return {
        'mean': mean,
        'std': std,
        'min': float(np.min(arr)),
        'max': float(np.max(arr)),
        'ci_95': ci,
        'n': n
    }


def success_rate(values: List[float], threshold: float) -> float:
    """Calculate percentage of runs meeting threshold criterion."""
    if len(values) == 0:
        return 0.0
    return float(np.mean(np.asarray(values) <= threshold) * 100.0)


# ==================== VISUALIZATION ====================

def plot_convergence(
    histories: Dict[str, List[float]],
    title: str = "Energy Convergence",
    xlabel: str = "Iteration",
    ylabel: str = "Energy",
    save_path: Optional[str] = None
):
    """Plot energy curves for one or more runs."""
    plt.figure(figsize=(10, 6))

    for label, history in histories.items():
        if not history:
            continue
        plt.plot(np.arange(1, len(history) + 1), history, label=label, linewidth=2)

    plt.xlabel(xlabel, fontsize=12)
    plt.ylabel(ylabel, fontsize=12)
    plt.title(title, fontsize=14, fontweight='bold')
    plt.legend()
    plt.grid(True, alpha=0.3)

    if save_path:
        plt.savefig(save_path, dpi=300, bbox_inches='tight')
    plt.close()


# ==================== RESULT PERSISTENCE ====================

def save_results(results: Dict, filepath: str):
    """Save experiment results to JSON file with timestamp."""
    results_with_metadata = {
        'timestamp': datetime.now().isoformat(),
        'results': results
    }

    os.makedirs(os.path.dirname(filepath) if os.path.dirname(filepath) else '.', exist_ok=True)

    with open(filepath, 'w') as f:
        json.dump(results_with_metadata, f, indent=2, default=_json_default)


def load_results(filepath: str) -> Dict:
    """Load experiment results from JSON file."""
    with open(filepath, 'r') as f:
        return json.load(f)


def _json_default(value):
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    return str(value)
