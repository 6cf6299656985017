"""PhenoSim visualization library.

Modules:
  - style: Dark theme colours and helpers
  - components: Variance partition and trait correlation plots
"""

from phenosim.viz.style import (  # noqa: F401
    COMPONENT_COLORS,
    DARK_BG,
    DARK_PANEL,
    GRID_COLOR,
    TEXT_COLOR,
    apply_dark_theme,
    dark_figure,
    save_figure,
)

from phenosim.viz.components import (  # noqa: F401
    plot_trait_correlation,
    plot_variance_partition,
)
