#!/usr/bin/env python3
"""
Hopfield TSP Experimental Protocol Executor
Runs the Hopfield solver repeatedly from perturbed initial states on a set of
instances and summarises tour quality and convergence statistics.
"""

import os
import argparse
import numpy as np
import pandas as pd
from typing import Dict, List, Optional
from datetime import datetime
from dataclasses import asdict

from utils import (
    setup_logger,
    save_results,
    compute_statistics,
    success_rate,
    plot_convergence
)
from methods.neural import HopfieldConfig, HopfieldTSPSolver
from problems.tsp import TSPInstance, MalformedInputError


logger = setup_logger("experiments")


# ==================== EXPERIMENT CONFIGURATION ====================

EXPERIMENT_CONFIG = {
    "instances": ["square4", "random5", "random6"],
    "n_runs": 10,
    "seed": 42,
    "hopfield": {
        "A": 1.0,
        "B": 1.0,
        "C": 0.5,
        "D": 0.2,
        "convergence_threshold": 1e-3,
        "max_iterations": 1000,
        "update_rule": "synchronous"
    }
}

UNIT_SQUARE = [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)]


def load_instance(instance_name: str, seed: Optional[int] = None) -> TSPInstance:
    """
    Resolve an instance name.

    Supported names:
      - 'square4' (unit square corners)
      - 'randomN' (N random Euclidean cities, seeded)
      - path to a CSV file with name, x, y columns
    """
    lowered = instance_name.lower()
    if lowered == "square4":
        return TSPInstance.from_coordinates(UNIT_SQUARE, names=["A", "B", "C", "D"], name="square4")
    if lowered.startswith("random"):
        digits = lowered[len("random"):]
        if not digits.isdigit() or int(digits) < 1:
            raise MalformedInputError(
                f"Random preset must look like 'randomN' with N >= 1, got '{instance_name}'"
            )
        n_cities = int(digits)
        return TSPInstance.random_euclidean(n_cities=n_cities, seed=seed)
    if os.path.exists(instance_name):
        return TSPInstance.from_file(instance_name)
    raise FileNotFoundError(f"Unknown instance '{instance_name}': not a preset and no such file")


# ==================== RESTART EXECUTION ====================

def run_restarts(
    instance: TSPInstance,
    config: HopfieldConfig,
    n_runs: int = 5,
    seed: Optional[int] = None,
    time_limit: Optional[float] = None
) -> pd.DataFrame:
    """
    Solve the same instance from `n_runs` different random initial states.

    Args:
        instance: Problem instance
        config: Hopfield coefficients and stopping rules
        n_runs: Number of independent runs
        seed: Base seed; run k uses seed + k
        time_limit: Time limit per run in seconds

    Returns:
        DataFrame with one row per run
    """
    if n_runs < 1:
        raise ValueError(f"n_runs must be at least 1, got {n_runs}")

    logger.info(f"Running {n_runs} Hopfield restarts on '{instance.name}' ({config.update_rule})")

    records = []
    for run in range(n_runs):
        solver = HopfieldTSPSolver(config)
        run_seed = seed + run if seed is not None else None
        result = solver.solve(instance, seed=run_seed, max_time=time_limit)

        records.append({
            "run": run + 1,
            "seed": run_seed,
            "valid": result["valid"],
            "converged": result["converged"],
            "iterations": result["iterations_completed"],
            "tour_length": result["tour_length"] if result["valid"] else np.nan,
            "final_energy": result["final_energy"],
            "computation_time": result["computation_time"],
            "tour": " -> ".join(result["tour"]) if result["valid"] else None,
            "energy_history": result["convergence_history"]
        })

        status = f"length={result['tour_length']:.4f}" if result["valid"] else "invalid tour"
        logger.info(f"  Run {run + 1}/{n_runs}: {status}, iterations={result['iterations_completed']}")

    return pd.DataFrame.from_records(records)


def summarize_runs(runs: pd.DataFrame) -> Dict:
    """Aggregate tour quality and convergence over the runs of one instance."""
    n_runs = len(runs)
    valid = runs[runs["valid"]]
    lengths = valid["tour_length"].tolist()

    summary = {
        "n_runs": n_runs,
        "valid_rate": 100.0 * len(valid) / n_runs if n_runs else 0.0,
        "convergence_rate": 100.0 * runs["converged"].sum() / n_runs if n_runs else 0.0,
        "mean_iterations": float(runs["iterations"].mean()) if n_runs else 0.0,
        "tour_length": compute_statistics(lengths),
        "best_tour": None,
        "success_rate": 0.0
    }

    if lengths:
        best_idx = valid["tour_length"].idxmin()
        summary["best_tour"] = valid.loc[best_idx, "tour"]
        summary["success_rate"] = success_rate(lengths, min(lengths) * 1.05)

    return summary


# ==================== SUITE ====================

def run_experiment_suite(
    instances: List[str],
    config: HopfieldConfig,
    n_runs: int,
    seed: Optional[int] = None,
    time_limit: Optional[float] = None,
    results_dir: str = "results",
    plot: bool = False
) -> Dict:
    """Run restarts on every instance and save the combined results."""
    suite = {}
    table_rows = []

    for instance_name in instances:
        instance = load_instance(instance_name, seed=seed)
        runs = run_restarts(instance, config, n_runs=n_runs, seed=seed, time_limit=time_limit)
        summary = summarize_runs(runs)

        suite[instance.name] = {
            "summary": summary,
            "runs": runs.drop(columns=["energy_history"]).to_dict(orient="records")
        }
        table_rows.append({
            "Instance": instance.name,
            "Cities": instance.n_cities,
            "Valid %": summary["valid_rate"],
            "Converged %": summary["convergence_rate"],
            "Best": summary["tour_length"]["min"],
            "Mean": summary["tour_length"]["mean"],
            "Std": summary["tour_length"]["std"]
        })

        if plot:
            os.makedirs(results_dir, exist_ok=True)
            histories = {f"run {row.run}": row.energy_history for row in runs.itertuples()}
            plot_convergence(
                histories,
                title=f"Hopfield energy on {instance.name}",
                save_path=os.path.join(results_dir, f"energy_{instance.name}.png")
            )

    table = pd.DataFrame(table_rows)
    logger.info("\n" + table.to_string(index=False, float_format=lambda v: f"{v:.4f}"))

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    output_file = os.path.join(results_dir, f"hopfield_experiments_{timestamp}.json")
    save_results({"config": asdict(config), "instances": suite}, output_file)
    logger.info(f"Experiment results saved to {output_file}")

    return suite


def parse_arguments():
    parser = argparse.ArgumentParser(
        description="Run repeated Hopfield TSP experiments",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument('--instances', nargs='+', default=EXPERIMENT_CONFIG["instances"],
                        help="Preset names (square4, randomN) or CSV files")
    parser.add_argument('--runs', type=int, default=EXPERIMENT_CONFIG["n_runs"], help="Runs per instance")
    parser.add_argument('--seed', type=int, default=EXPERIMENT_CONFIG["seed"], help="Base random seed")
    parser.add_argument('--time-limit', type=float, default=None, help="Time limit per run (seconds)")
    parser.add_argument('--update-rule', choices=["synchronous", "explicit"],
                        default=EXPERIMENT_CONFIG["hopfield"]["update_rule"])
    parser.add_argument('--results-dir', type=str, default="results")
    parser.add_argument('--plot', action='store_true', help="Save energy convergence plots")
    return parser.parse_args()


def main():
    args = parse_arguments()
    params = dict(EXPERIMENT_CONFIG["hopfield"], update_rule=args.update_rule)
    config = HopfieldConfig.from_dict(params)

    run_experiment_suite(
        instances=args.instances,
        config=config,
        n_runs=args.runs,
        seed=args.seed,
        time_limit=args.time_limit,
        results_dir=args.results_dir,
        plot=args.plot
    )


if __name__ == "__main__":
    main()
