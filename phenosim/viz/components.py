"""Plots of a finished phenotype simulation.

Every function:
  - Accepts a PhenotypeResult as input
  - Returns a matplotlib Figure
  - Has an optional ``save_path`` parameter (saves PNG when given)
  - Uses the shared dark theme from ``phenosim.viz.style``

matplotlib backend is forced to Agg (no display) on import.
"""

from __future__ import annotations

import matplotlib
matplotlib.use('Agg')

from typing import Optional, TYPE_CHECKING

import matplotlib.pyplot as plt
import numpy as np

from phenosim.viz.style import (
    DARK_PANEL,
    GRID_COLOR,
    TEXT_COLOR,
    colorbar,
    component_color,
    dark_figure,
    save_figure,
)

if TYPE_CHECKING:
    from phenosim.model import PhenotypeResult


# ═══════════════════════════════════════════════════════════════════════
# 1. VARIANCE PARTITION
# ═══════════════════════════════════════════════════════════════════════

def plot_variance_partition(
    result: 'PhenotypeResult',
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Bar chart of each rescaled component's pooled variance.

    Target shares are drawn as outlined markers so unattainable targets
    (constant components) stand out.

    Args:
        result: PhenotypeResult from simulate_phenotype().
        save_path: Path to save figure.

    Returns:
        matplotlib Figure.
    """
    names = list(result.components)
    achieved = np.array([result.components[n].var_after for n in names])
    targets = np.array([result.components[n].target for n in names])
    x = np.arange(len(names))

    fig, ax = dark_figure()
    bars = ax.bar(x, achieved, color=[component_color(n) for n in names],
                  edgecolor=GRID_COLOR, linewidth=0.8)
    for bar, name in zip(bars, names):
        if name.endswith('_independent'):
            bar.set_hatch('//')
    ax.scatter(x, targets, marker='_', s=400, color=TEXT_COLOR,
               linewidths=2, label='target', zorder=3)

    ax.set_xticks(x)
    ax.set_xticklabels([n.replace('_', ' ') for n in names],
                       rotation=35, ha='right', fontsize=9)
    ax.set_ylabel('Variance share', fontsize=12)
    ax.set_title(
        f'Variance Partition ({result.genetic_model.value} genetic, '
        f'{result.noise_model.value} noise)',
        fontsize=13, fontweight='bold',
    )
    ax.legend(facecolor=DARK_PANEL, edgecolor=GRID_COLOR,
              labelcolor=TEXT_COLOR, fontsize=10, loc='upper right')

    if save_path:
        save_figure(fig, save_path)
    return fig


# ═══════════════════════════════════════════════════════════════════════
# 2. TRAIT CORRELATION
# ═══════════════════════════════════════════════════════════════════════

def plot_trait_correlation(
    result: 'PhenotypeResult',
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Heatmap of the trait × trait correlation of the final phenotype.

    Args:
        result: PhenotypeResult from simulate_phenotype().
        save_path: Path to save figure.

    Returns:
        matplotlib Figure.
    """
    n_traits = result.phenotype.shape[1]
    if n_traits > 1:
        corr = np.corrcoef(result.phenotype, rowvar=False)
    else:
        corr = np.ones((1, 1))

    fig, ax = dark_figure(figsize=(8, 7))
    im = ax.imshow(corr, cmap='RdBu_r', vmin=-1, vmax=1,
                   interpolation='nearest')
    if n_traits <= 20:
        ax.set_xticks(range(n_traits))
        ax.set_yticks(range(n_traits))
        ax.set_xticklabels(result.trait_ids, rotation=45, ha='right', fontsize=9)
        ax.set_yticklabels(result.trait_ids, fontsize=9)
    ax.set_title('Trait Correlation', fontsize=14, fontweight='bold')
    colorbar(fig, im, ax, 'Pearson r')

    if save_path:
        save_figure(fig, save_path)
    return fig
