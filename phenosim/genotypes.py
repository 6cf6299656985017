"""Genotype simulation, standardisation and causal-variant sampling.

Genotypes are (n_samples, n_variants) allele dosages in {0, 1, 2}.

Genotype sources hide where the columns come from: an in-memory matrix or
a set of per-chromosome readers that return column ranges. Parsing of
on-disk formats happens outside this package; a source only hands over
already-numeric arrays.

Causal variants are drawn uniformly per variant across the whole source,
never per chromosome, so large chromosomes are not under-represented.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Mapping, Sequence, Tuple

import numpy as np

from phenosim.errors import ConfigurationError, DimensionError, SamplingError

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# SIMULATION
# ═══════════════════════════════════════════════════════════════════════

def simulate_genotypes(
    n_samples: int,
    n_snps: int,
    frequencies: Sequence[float],
    rng: np.random.Generator,
) -> Tuple[np.ndarray, np.ndarray]:
    """Simulate independent bi-allelic variants.

    For each variant an allele frequency is drawn uniformly from
    ``frequencies``; every sample's dosage is Binomial(2, f).

    Args:
        n_samples: Number of samples (rows).
        n_snps: Number of variants (columns).
        frequencies: Candidate allele frequencies, each in (0, 1).
        rng: NumPy random Generator.

    Returns:
        (genotypes, freqs): (n_samples, n_snps) int8 dosages and the
        (n_snps,) frequency used for each column.

    Raises:
        ConfigurationError: On non-positive dimensions or invalid frequencies.
    """
    if n_samples <= 0:
        raise ConfigurationError(f"n_samples must be > 0, got {n_samples}")
    if n_snps <= 0:
        raise ConfigurationError(f"n_snps must be > 0, got {n_snps}")
    candidates = np.asarray(frequencies, dtype=np.float64)
    if candidates.size == 0:
        raise ConfigurationError("allele frequency set must not be empty")
    if np.any((candidates <= 0.0) | (candidates >= 1.0)):
        raise ConfigurationError(
            f"allele frequencies must lie in (0, 1), got {candidates.tolist()}"
        )

    freqs = rng.choice(candidates, size=n_snps, replace=True)
    genotypes = rng.binomial(2, freqs, size=(n_samples, n_snps)).astype(np.int8)
    logger.debug("simulated %d x %d genotypes", n_samples, n_snps)
    return genotypes, freqs


def allele_frequencies(genotypes: np.ndarray) -> np.ndarray:
    """Per-variant frequency of the counted allele (mean dosage / 2)."""
    return np.asarray(genotypes, dtype=np.float64).mean(axis=0) / 2.0


def standardise_genotypes(genotypes: np.ndarray) -> np.ndarray:
    """Zero mean, unit variance per column.

    Monomorphic columns carry no information and become all-zero instead
    of producing a division by zero.
    """
    g = np.asarray(genotypes, dtype=np.float64)
    centred = g - g.mean(axis=0)
    sd = g.std(axis=0)
    out = np.zeros_like(centred)
    poly = sd > 0
    out[:, poly] = centred[:, poly] / sd[poly]
    return out


# ═══════════════════════════════════════════════════════════════════════
# GENOTYPE SOURCES
# ═══════════════════════════════════════════════════════════════════════

class GenotypeSource:
    """Column-wise access to a genotype matrix.

    Subclasses provide ``n_samples``, ``n_variants`` and
    ``read_columns(indices)`` for global column indices.
    """

    n_samples: int
    n_variants: int

    def read_columns(self, indices: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def read_all(self) -> np.ndarray:
        return self.read_columns(np.arange(self.n_variants))

    def labels(self, indices: np.ndarray) -> List[str]:
        return [f"SNP_{i}" for i in indices]


class InMemoryGenotypes(GenotypeSource):
    """Genotype source backed by a full (n_samples, n_variants) matrix."""

    def __init__(self, genotypes: np.ndarray):
        genotypes = np.asarray(genotypes)
        if genotypes.ndim != 2:
            raise DimensionError(
                f"genotype matrix must be 2-D, got shape {genotypes.shape}"
            )
        self.genotypes = genotypes
        self.n_samples, self.n_variants = genotypes.shape

    def read_columns(self, indices: np.ndarray) -> np.ndarray:
        return self.genotypes[:, np.asarray(indices, dtype=np.intp)]

    def read_all(self) -> np.ndarray:
        return self.genotypes


@dataclass
class ChromosomeSource:
    """One chromosome: a variant count and a column-range reader.

    ``read_range(start, stop)`` returns an (n_samples, stop - start) array of
    the chromosome's columns [start, stop).
    """
    name: str
    n_variants: int
    read_range: Callable[[int, int], np.ndarray]

    @classmethod
    def from_array(cls, name: str, genotypes: np.ndarray) -> 'ChromosomeSource':
        genotypes = np.asarray(genotypes)
        return cls(
            name=name,
            n_variants=genotypes.shape[1],
            read_range=lambda start, stop: genotypes[:, start:stop],
        )


class ChromosomeGenotypes(GenotypeSource):
    """Genotype source partitioned by chromosome.

    Global column index ``i`` maps to the chromosome whose cumulative
    variant range contains it; chromosomes are ordered as given.
    """

    def __init__(self, chromosomes: Sequence[ChromosomeSource], n_samples: int):
        if len(chromosomes) == 0:
            raise ConfigurationError("at least one chromosome is required")
        self.chromosomes = list(chromosomes)
        self.n_samples = n_samples
        counts = np.array([c.n_variants for c in self.chromosomes], dtype=np.int64)
        if np.any(counts < 0):
            raise ConfigurationError("chromosome variant counts must be >= 0")
        self._offsets = np.concatenate(([0], np.cumsum(counts)))
        self.n_variants = int(self._offsets[-1])

    @classmethod
    def from_arrays(cls, arrays: Mapping[str, np.ndarray]) -> 'ChromosomeGenotypes':
        chroms = [ChromosomeSource.from_array(name, g) for name, g in arrays.items()]
        n_rows = {np.asarray(g).shape[0] for g in arrays.values()}
        if len(n_rows) != 1:
            raise DimensionError(
                f"chromosome arrays disagree on sample count: {sorted(n_rows)}"
            )
        return cls(chroms, n_samples=n_rows.pop())

    def _locate(self, indices: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        chrom_idx = np.searchsorted(self._offsets, indices, side='right') - 1
        local = indices - self._offsets[chrom_idx]
        return chrom_idx, local

    def read_columns(self, indices: np.ndarray) -> np.ndarray:
        indices = np.asarray(indices, dtype=np.int64)
        out = np.empty((self.n_samples, indices.size), dtype=np.float64)
        chrom_idx, local = self._locate(indices)
        for col, (c, j) in enumerate(zip(chrom_idx, local)):
            block = np.asarray(self.chromosomes[c].read_range(int(j), int(j) + 1))
            if block.shape != (self.n_samples, 1):
                raise DimensionError(
                    f"chromosome {self.chromosomes[c].name} returned shape "
                    f"{block.shape}, expected ({self.n_samples}, 1)"
                )
            out[:, col] = block[:, 0]
        return out

    def labels(self, indices: np.ndarray) -> List[str]:
        chrom_idx, local = self._locate(np.asarray(indices, dtype=np.int64))
        return [f"{self.chromosomes[c].name}:{j}" for c, j in zip(chrom_idx, local)]


# ═══════════════════════════════════════════════════════════════════════
# CAUSAL VARIANTS
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class CausalVariants:
    """Causal genotype columns and where they came from."""
    genotypes: np.ndarray           # (n_samples, n_causal) float64
    indices: np.ndarray             # (n_causal,) global column indices
    labels: List[str] = field(default_factory=list)


def check_causal_count(n_available: int, n_causal: int) -> None:
    """Fail before sampling if ``n_causal`` variants cannot be drawn."""
    if n_causal <= 0:
        raise ConfigurationError(
            f"number of causal variants must be > 0, got {n_causal}"
        )
    if n_causal > n_available:
        raise SamplingError(
            f"requested {n_causal} causal variants but the genotype source "
            f"has only {n_available}"
        )


def sample_causal_variants(
    source: GenotypeSource,
    n_causal: int,
    rng: np.random.Generator,
    standardise: bool = True,
) -> CausalVariants:
    """Draw ``n_causal`` distinct variants uniformly from ``source``.

    Args:
        source: Genotype source (in-memory or per-chromosome).
        n_causal: Number of variants to draw, without replacement.
        rng: NumPy random Generator.
        standardise: Z-score each causal column (monomorphic → 0).

    Returns:
        CausalVariants with columns in ascending global index order.

    Raises:
        ConfigurationError: If ``n_causal`` <= 0.
        SamplingError: If ``n_causal`` exceeds the available variants.
    """
    check_causal_count(source.n_variants, n_causal)
    indices = np.sort(rng.choice(source.n_variants, size=n_causal, replace=False))
    genotypes = np.asarray(source.read_columns(indices), dtype=np.float64)
    if genotypes.shape != (source.n_samples, n_causal):
        raise DimensionError(
            f"causal genotypes have shape {genotypes.shape}, expected "
            f"({source.n_samples}, {n_causal})"
        )
    if standardise:
        genotypes = standardise_genotypes(genotypes)
    logger.debug("sampled %d causal variants", n_causal)
    return CausalVariants(genotypes=genotypes, indices=indices,
                          labels=source.labels(indices))
