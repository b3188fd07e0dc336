"""
Plot stored fits

A fit is redrawn from its snapshot: the model parameters are set from the
snapshot and the curve is evaluated, nothing is refitted.

Example usage:
    plotter = FitPlotter(output_dir="plots")
    plotter.plot_snapshot(workspace, model, "fitData", "snap_fullData")
"""

from __future__ import annotations

import logging
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import mplhep as hep
import numpy as np

from .mass_model import MassModel
from .workspace import Workspace

logging.getLogger("matplotlib.font_manager").setLevel(logging.ERROR)

plt.style.use(hep.style.CMS)
matplotlib.rcParams["font.family"] = "sans-serif"

COMPONENT_STYLES = {
    "bkgPoly": {"color": "gray", "linestyle": "--", "label": "Background"},
    "sigCB1S": {"color": "tab:red", "linestyle": ":", "label": r"$\Upsilon(1S)$"},
    "sigCB2S": {"color": "tab:green", "linestyle": ":", "label": r"$\Upsilon(2S)$"},
    "sigCB3S": {"color": "tab:orange", "linestyle": ":", "label": r"$\Upsilon(3S)$"},
}


class FitPlotter:
    """Class for drawing data with the model curve of a stored fit"""

    def __init__(self, output_dir: str | Path, bins: int = 70) -> None:
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.bins = bins
        self.logger = logging.getLogger("UpsilonFits.FitPlotter")

    def plot_snapshot(
        self,
        workspace: Workspace,
        model: MassModel,
        data_name: str,
        snapshot_name: str,
        filename: str | None = None,
    ) -> Path:
        """
        Draw ``data_name`` with the model at the parameters of ``snapshot_name``.

        Returns:
            Path of the written figure
        """
        data = workspace.data(data_name)
        workspace.load_snapshot(snapshot_name, model)

        lo, hi = model.fit_range
        masses = data.values(model.observable.name)
        masses = masses[(masses >= lo) & (masses <= hi)]

        counts, edges = np.histogram(masses, bins=self.bins, range=(lo, hi))
        bin_width = edges[1] - edges[0]
        scale = len(masses) * bin_width

        x = np.linspace(lo, hi, 500)
        fractions = model.fractions()
        components = model.component_densities(x)
        total = sum(fractions[name] * components[name] for name in components)

        fig, ax = plt.subplots(figsize=(10, 8))
        hep.histplot(counts, edges, yerr=np.sqrt(counts), histtype="errorbar", color="black", label="Data", ax=ax)
        ax.plot(x, scale * total, color="tab:blue", linewidth=2, label="Total fit")
        for name, density in components.items():
            style = COMPONENT_STYLES[name]
            ax.plot(
                x,
                scale * fractions[name] * density,
                color=style["color"],
                linestyle=style["linestyle"],
                linewidth=2,
                label=style["label"],
            )

        ax.set_xlim(lo, hi)
        ax.set_ylim(bottom=0)
        ax.set_xlabel(r"$m_{\mu\mu}$ [GeV]")
        ax.set_ylabel(f"Candidates / ({1000 * bin_width:.0f} MeV)")
        ax.legend(loc="upper right", fontsize=16)
        ax.set_title(snapshot_name, fontsize=16)

        output_file = self.output_dir / (filename or f"{snapshot_name}.pdf")
        fig.savefig(output_file)
        plt.close(fig)

        self.logger.info(f"Saved fit plot: {output_file}")
        return output_file
