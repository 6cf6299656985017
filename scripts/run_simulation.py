#!/usr/bin/env python3
"""Run one PhenoSim simulation from YAML configuration.

Writes to the output directory:
  phenotype.npz    final phenotype, every rescaled component, sample/trait ids
  parameters.yaml  completed variance proportions, model variants, seed
  *.png            variance partition and trait correlation plots (--plot)

Usage:
    python3 scripts/run_simulation.py --config configs/default.yaml --output results/run_00/
    python3 scripts/run_simulation.py --config configs/default.yaml \
        --scenario configs/nonlinear_exp.yaml --seed 7 --output results/run_01/ --plot
"""

import argparse
import logging
import sys
from pathlib import Path

import numpy as np
import yaml

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from phenosim.config import load_config
from phenosim.errors import PhenoSimError
from phenosim.model import simulate_phenotype

logger = logging.getLogger('run_simulation')


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Simulate multi-trait phenotypes")
    p.add_argument("--config", required=True, help="Base configuration YAML")
    p.add_argument("--scenario", default=None, help="Scenario override YAML")
    p.add_argument("--seed", type=int, default=None,
                   help="RNG seed (overrides simulation.seed)")
    p.add_argument("--output", required=True, help="Output directory")
    p.add_argument("--plot", action="store_true", help="Write diagnostic plots")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return p.parse_args(argv)


def save_result(result, out_dir: Path) -> None:
    arrays = {
        'phenotype': result.phenotype,
        'sample_ids': np.array(result.sample_ids),
        'trait_ids': np.array(result.trait_ids),
    }
    for name, record in result.components.items():
        arrays[name] = record.rescaled
    np.savez_compressed(out_dir / 'phenotype.npz', **arrays)

    summary = {
        'seed': result.seed,
        'parameters': result.parameters,
        'component_variance': result.variance_summary(),
    }
    if result.causal is not None:
        summary['causal_variants'] = list(result.causal.labels)
    with open(out_dir / 'parameters.yaml', 'w') as f:
        yaml.safe_dump(summary, f, sort_keys=False)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    try:
        config = load_config(args.config, args.scenario)
        result = simulate_phenotype(config, seed=args.seed)
    except PhenoSimError as exc:
        logger.error("simulation failed: %s", exc)
        return 1

    out_dir = Path(args.output)
    out_dir.mkdir(parents=True, exist_ok=True)
    save_result(result, out_dir)
    logger.info("wrote %d x %d phenotype to %s",
                result.phenotype.shape[0], result.phenotype.shape[1], out_dir)

    if args.plot:
        from phenosim.viz import plot_trait_correlation, plot_variance_partition
        plot_variance_partition(result, save_path=out_dir / 'variance_partition.png')
        plot_trait_correlation(result, save_path=out_dir / 'trait_correlation.png')
    return 0


if __name__ == "__main__":
    sys.exit(main())
