# scripts/run_chapters.py
import argparse
import logging
import sys
import time

from supervised_ml.chapters import (
    bayesian_regression,
    decision_trees,
    emmeans,
    generalized_linear_models,
    linear_mixed_effects,
    linear_regression,
    nonlinear_regression,
    regularization,
    support_vector_machines,
)
from supervised_ml.config.notebook_config import NotebookConfig

logger = logging.getLogger(__name__)

# Book order
CHAPTERS = {
    'linear_regression': linear_regression,
    'generalized_linear_models': generalized_linear_models,
    'linear_mixed_effects': linear_mixed_effects,
    'nonlinear_regression': nonlinear_regression,
    'regularization': regularization,
    'decision_trees': decision_trees,
    'support_vector_machines': support_vector_machines,
    'bayesian_regression': bayesian_regression,
    'emmeans': emmeans,
}


def resolve_chapters(names):
    """Validate chapter names and return them in book order."""
    if not names:
        return list(CHAPTERS)
    unknown = [name for name in names if name not in CHAPTERS]
    if unknown:
        raise ValueError(f"Unknown chapter(s) {unknown}. Available: {list(CHAPTERS)}")
    return [name for name in CHAPTERS if name in names]


def run_chapters(names, config):
    """Run chapters in order; a failing chapter is logged and skipped."""
    results, failures = {}, {}
    for name in resolve_chapters(names):
        start_time = time.time()
        logger.info(f"🚀 Running chapter: {name}")
        try:
            results[name] = CHAPTERS[name].run(config)
        except Exception as e:
            logger.error(f"Chapter '{name}' failed: {e}")
            failures[name] = e
            continue
        logger.info(f"Chapter '{name}' finished in {time.time() - start_time:.1f}s")
    return results, failures


def build_parser():
    parser = argparse.ArgumentParser(description="Run the supervised machine learning study-note chapters.")
    parser.add_argument("--chapters", nargs="+", default=None, help="Chapters to run (default: all, in book order).")
    parser.add_argument("--output-dir", type=str, default=None, help="Directory for reports, plots and models.")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for simulations and resampling.")
    parser.add_argument("--rt-csv", type=str, default=None, help="Response-time CSV for the mixed effects chapter.")
    parser.add_argument("--no-save-models", action="store_true", help="Skip persisting fitted models.")
    parser.add_argument("--list", action="store_true", help="List the chapters and exit.")
    parser.add_argument("--verbose", action="store_true", help="Show progress bars.")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level.")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format='%(asctime)s - %(levelname)s - %(message)s')

    if args.list:
        for i, name in enumerate(CHAPTERS, start=1):
            print(f"{i:2d}. {name}")
        return 0

    try:
        names = resolve_chapters(args.chapters)
    except ValueError as e:
        logger.error(str(e))
        return 2

    config = NotebookConfig.from_env(
        output_dir=args.output_dir,
        random_state=args.seed,
        rt_csv=args.rt_csv,
        save_models=False if args.no_save_models else None,
        verbose=True if args.verbose else None,
    )
    results, failures = run_chapters(names, config)

    print("\n" + "=" * 25 + " SUMMARY " + "=" * 25)
    for name in names:
        status = "OK" if name in results else f"FAILED ({failures[name]})"
        print(f"{name:<28} {status}")
    print(f"Output written to: {config.output_dir}")

    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
