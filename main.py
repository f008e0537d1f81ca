#!/usr/bin/env python3
"""
Hopfield TSP Solver
Main entry point: solve a TSP instance with a discrete Hopfield network.
"""

import os
import sys
import argparse
import json
import logging
from typing import Dict
from datetime import datetime

from utils import (
    setup_logger,
    log_to_file,
    save_results,
    plot_convergence
)
from methods.neural import HopfieldConfig, HopfieldTSPSolver, LoggingObserver
from problems.tsp import TSPInstance
from experiments import load_instance, run_restarts, summarize_runs


logger = setup_logger("hopfield_main")


def parse_arguments(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Solve the Traveling Salesman Problem with a Hopfield network",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    problem_group = parser.add_argument_group('Problem Selection')
    source = problem_group.add_mutually_exclusive_group()
    source.add_argument('--cities', type=str, help='CSV file with name, x, y columns')
    source.add_argument('--random', type=int, metavar='N', help='Generate N random cities')
    source.add_argument('--instance', type=str, default='square4', help='Preset instance (square4, randomN)')
    problem_group.add_argument('--seed', type=int, default=None, help='Random seed (cities and initial state)')

    network_group = parser.add_argument_group('Network Parameters')
    network_group.add_argument('--config', type=str, help='JSON file with Hopfield parameters')
    network_group.add_argument('-A', type=float, help='Row (same city) penalty')
    network_group.add_argument('-B', type=float, help='Column (same position) penalty')
    network_group.add_argument('-C', type=float, help='Active-count penalty / bias')
    network_group.add_argument('-D', type=float, help='Distance scaling')
    network_group.add_argument('--threshold', type=float, help='Energy change that counts as converged')
    network_group.add_argument('--max-iterations', type=int, help='Maximum number of updates')
    network_group.add_argument('--update-rule', choices=['synchronous', 'explicit'], help='Dynamics to run')

    run_group = parser.add_argument_group('Execution')
    run_group.add_argument('--runs', type=int, default=1, help='Independent restarts')
    run_group.add_argument('--max-time', type=float, default=None, help='Time limit per run (seconds)')
    run_group.add_argument('--plot', type=str, default=None, help='Save energy plot to this path')
    run_group.add_argument('--results-dir', type=str, default='results', help='Where to save JSON results')
    run_group.add_argument('--log-file', type=str, default=None, help='Also log to this file')
    run_group.add_argument('--verbose', action='store_true', help='Log every iteration')

    return parser.parse_args(argv)


def load_config(args) -> HopfieldConfig:
    """Merge a JSON config file (if any) with command-line overrides."""
    params: Dict = {}
    if args.config:
        with open(args.config, 'r') as f:
            params.update(json.load(f))
        logger.info(f"Loaded Hopfield config from {args.config}")

    overrides = {
        'A': args.A,
        'B': args.B,
        'C': args.C,
        'D': args.D,
        'convergence_threshold': args.threshold,
        'max_iterations': args.max_iterations,
        'update_rule': args.update_rule
    }
    params.update({k: v for k, v in overrides.items() if v is not None})
    return HopfieldConfig.from_dict(params)


def build_instance(args) -> TSPInstance:
    if args.cities:
        return TSPInstance.from_file(args.cities)
    if args.random:
        return TSPInstance.random_euclidean(args.random, seed=args.seed)
    return load_instance(args.instance, seed=args.seed)


def print_summary(instance: TSPInstance, results: Dict):
    print("\n" + "=" * 70)
    print("HOPFIELD TSP SUMMARY")
    print("=" * 70)
    print(f"Instance:     {instance.name} ({instance.n_cities} cities)")
    print(f"Update rule:  {results['update_rule']}")
    print(f"Converged:    {results['converged']} after {results['iterations_completed']} iterations")
    print(f"Final energy: {results['final_energy']:.4f}")
    if results['valid']:
        print(f"Tour:         {' -> '.join(results['tour'])}")
        print(f"Tour length:  {results['tour_length']:.4f}")
    else:
        print("Tour:         INVALID (state is not a permutation matrix)")
        print(f"Reason:       {results['invalid_reason']}")
    print("=" * 70)


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_arguments(argv)

    if args.log_file:
        log_to_file(args.log_file)
    if args.verbose:
        logging.getLogger("neural_methods").setLevel(logging.DEBUG)

    config = load_config(args)
    instance = build_instance(args)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

    if args.runs > 1:
        runs = run_restarts(instance, config, n_runs=args.runs, seed=args.seed, time_limit=args.max_time)
        summary = summarize_runs(runs)
        print(runs.drop(columns=["energy_history"]).to_string(index=False))
        print(f"\nValid tours: {summary['valid_rate']:.1f}%  Best tour: {summary['best_tour']}")

        if args.plot:
            plot_convergence({f"run {row.run}": row.energy_history for row in runs.itertuples()},
                             title=f"Hopfield energy on {instance.name}", save_path=args.plot)

        output_file = os.path.join(args.results_dir, f"hopfield_{instance.name}_{timestamp}.json")
        save_results({"summary": summary,
                      "runs": runs.drop(columns=["energy_history"]).to_dict(orient="records")}, output_file)
        logger.info(f"Results saved to {output_file}")
        return 0 if summary['best_tour'] else 1

    solver = HopfieldTSPSolver(config)
    observer = LoggingObserver() if args.verbose else None
    results = solver.solve(instance, seed=args.seed, observer=observer, max_time=args.max_time)
    print_summary(instance, results)

    if args.plot:
        plot_convergence({instance.name: results['convergence_history']},
                         title=f"Hopfield energy on {instance.name}", save_path=args.plot)

    output_file = os.path.join(args.results_dir, f"hopfield_{instance.name}_{timestamp}.json")
    save_results(results, output_file)
    logger.info(f"Results saved to {output_file}")
    return 0 if results['valid'] else 1


def run():
    """Console entry point with interrupt and fatal-error handling."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logger.info("\nExecution interrupted by user. Exiting gracefully...")
        sys.exit(0)
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
