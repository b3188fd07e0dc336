#!/usr/bin/env python3
"""
Upsilon mass fits in kinematic bins

This script:
1. Loads the selected candidates (tree 'selectedData') from the input file
2. Builds the three-peak plus background mass model
3. Fits the full dataset and prints its status and covariance quality
4. Refits the model in every bin of the chosen binning scheme, starting each
   fit from the previous result
5. Writes data, subsets, fit results and snapshots into one ROOT file

Usage:
    # Run with the default configuration and scheme
    python -m upsilon_fits.run_fits selected_data.root

    # Other scheme / output
    upsilon-fits selected_data.root --scheme abs_costh_bins --output costh.root
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from upsilon_fits.modules.data_handler import DataManager, TOMLConfig
from upsilon_fits.modules.exceptions import AnalysisError
from upsilon_fits.modules.fit_orchestrator import FitOrchestrator
from upsilon_fits.modules.mass_model import build_model
from upsilon_fits.modules.minimizer import MinuitMinimizer
from upsilon_fits.modules.selection import build_scheme
from upsilon_fits.modules.workspace import Workspace
from upsilon_fits.utils.logging_config import setup_logging, suppress_warnings


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="Upsilon(1S,2S,3S) mass fits in kinematic bins",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
By default the fits use the configuration shipped with the package and the
scheme set as default_scheme in binning.toml.

Examples:
  upsilon-fits data.root
  upsilon-fits data.root --scheme nch_thresholds --plots
  upsilon-fits data.root --config-dir my_config --output results/ws.root
        """,
    )

    parser.add_argument("input_file", help="ROOT file with the selected candidates")

    parser.add_argument(
        "--config-dir",
        default=None,
        help="Directory with physics/fitting/binning/data TOML files (default: packaged config)",
    )

    parser.add_argument(
        "--scheme",
        default=None,
        help="Binning scheme from binning.toml (default: [batch] default_scheme)",
    )

    parser.add_argument(
        "--output",
        default=None,
        help="Output workspace file (default: scheme output from binning.toml)",
    )

    parser.add_argument(
        "--plots",
        action="store_true",
        help="Draw every stored fit into the plots directory from data.toml",
    )

    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output")

    return parser.parse_args(argv)


def run(args: argparse.Namespace) -> int:
    logger = setup_logging(args.verbose)

    config = TOMLConfig(args.config_dir)
    scheme_name = args.scheme or config.get_default_scheme()
    selections = build_scheme(config.get_scheme(scheme_name))
    output = Path(args.output) if args.output else config.get_output_path(scheme_name)

    logger.info("=" * 70)
    logger.info("Upsilon mass fits")
    logger.info("=" * 70)
    logger.info(f"  Input: {args.input_file}")
    logger.info(f"  Scheme: {scheme_name} ({len(selections)} selections)")
    logger.info(f"  Output: {output}")

    # Step 1: declare observables and load data
    workspace = Workspace("workspace")
    observables = config.get_variables()
    for observable in observables:
        workspace.import_var(observable)

    names = config.get_input_options()
    loader = DataManager(observables, tree_name=names["tree_name"])
    full_data = loader.load_dataset(args.input_file, name=names["full_data_name"])
    workspace.import_data(full_data)

    # Step 2: model
    model_options = config.get_model_options()
    model = build_model(
        workspace,
        config.get_fit_range(),
        observable=model_options["observable"],
        background_order=model_options["background_order"],
        pdg_masses=config.get_pdg_masses(),
        seeds=config.get_parameter_seeds(),
    )
    workspace.import_model(model)
    workspace.var(model.observable.name).set_range(model.fit_range_name, *model.fit_range)

    # Step 3: fit all data
    fit_data = full_data.renamed(names["fit_data_name"])
    workspace.import_data(fit_data)

    orchestrator = FitOrchestrator(
        workspace,
        model,
        MinuitMinimizer(**config.get_minimizer_settings()),
        config.get_minimizer_options(),
    )
    primary = orchestrator.fit_dataset(fit_data, names["full_data_name"])
    print(f"{primary.result.status} {primary.result.cov_qual}")

    # Step 4: fits in bins
    batch = orchestrator.run_batch(fit_data, selections)

    # Step 5: write everything
    workspace.write_to_file(output)

    if args.plots:
        from upsilon_fits.modules.plotter import FitPlotter

        plotter = FitPlotter(config.get_plots_dir())
        plotter.plot_snapshot(workspace, model, fit_data.name, primary.snapshot.name)
        for name, _ in batch:
            plotter.plot_snapshot(workspace, model, f"data_{name}", f"snap_{name}")

    logger.info("=" * 70)
    logger.info(f"Fits complete! Workspace written to {output}")
    logger.info("=" * 70)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point; returns the process exit code"""
    args = parse_args(argv)
    suppress_warnings()
    try:
        return run(args)
    except AnalysisError as e:
        setup_logging(args.verbose).error(f"{type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
