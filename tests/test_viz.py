"""Tests for phenosim.viz — figures are built and saved without a display."""

import matplotlib
matplotlib.use('Agg')

import matplotlib.pyplot as plt
import pytest

from phenosim.config import SimulationConfig, SimulationSection, VarianceSection
from phenosim.model import simulate_phenotype
from phenosim.viz import (
    DARK_BG,
    plot_trait_correlation,
    plot_variance_partition,
)
from phenosim.viz.style import COMPONENT_COLORS, TEXT_COLOR, component_color


@pytest.fixture(scope='module')
def result():
    config = SimulationConfig(
        simulation=SimulationSection(n_samples=50, n_traits=6, seed=3),
        variance=VarianceSection(gen_var=0.3, h2s=0.0, delta=0.2, rho=0.3),
    )
    return simulate_phenotype(config)


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close('all')


class TestStyle:
    def test_component_color_by_family(self):
        assert component_color('noise_fixed_independent') == COMPONENT_COLORS['noise_fixed']
        assert component_color('correlated') == COMPONENT_COLORS['correlated']

    def test_unknown_component(self):
        assert component_color('other') == TEXT_COLOR


class TestPlots:
    def test_variance_partition_bars(self, result):
        fig = plot_variance_partition(result)
        ax = fig.axes[0]
        assert len(ax.patches) == len(result.components)
        assert fig.patch.get_facecolor()[:3] == pytest.approx(
            matplotlib.colors.to_rgb(DARK_BG))

    def test_trait_correlation_image(self, result):
        fig = plot_trait_correlation(result)
        image = fig.axes[0].images[0]
        assert image.get_array().shape == (6, 6)

    def test_save(self, result, tmp_path):
        p1 = tmp_path / 'partition.png'
        p2 = tmp_path / 'corr.png'
        plot_variance_partition(result, save_path=p1)
        plot_trait_correlation(result, save_path=p2)
        assert p1.stat().st_size > 0
        assert p2.stat().st_size > 0
