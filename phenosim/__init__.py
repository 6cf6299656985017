"""PhenoSim: synthetic multi-trait phenotypes with controlled variance structure.

A phenotype is assembled from independently simulated components:
  - Genetic fixed effects (causal variants × effect sizes)
  - Infinitesimal genetic background (kinship-structured)
  - Non-genetic covariate effects (confounders)
  - Correlated background (trait-autocorrelated noise)
  - Observational noise

Each component is rescaled to an exact share of unit total variance and the
rescaled parts are summed, optionally followed by a nonlinear transform.
Entry point: ``phenosim.model.simulate_phenotype``.
"""

__version__ = "0.1.0"
