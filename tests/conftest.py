"""
Shared fixtures: a linear-Gaussian gene network with a known DAG.

    ESR1 ──0.8──► BRCA1 ◄──0.7── GATA3
                    │
                   0.9
                    ▼
    ERBB2 ──0.6──► TP53 ──0.8──► MDM2

    KRT5 is independent noise.

Markov blanket of BRCA1: ESR1, GATA3, TP53 (child), ERBB2 (co-parent).
"""

import numpy as np
import pandas as pd
import pytest

from brca_causal.discovery import CPDAG

TRUE_EDGES = [
    ("ESR1", "BRCA1"),
    ("GATA3", "BRCA1"),
    ("BRCA1", "TP53"),
    ("ERBB2", "TP53"),
    ("TP53", "MDM2"),
]
GENES = ["ESR1", "GATA3", "BRCA1", "ERBB2", "TP53", "MDM2", "KRT5"]


def simulate(n: int, seed: int = 42) -> pd.DataFrame:
    rng = np.random.RandomState(seed)
    esr1 = rng.normal(size=n)
    gata3 = rng.normal(size=n)
    erbb2 = rng.normal(size=n)
    krt5 = rng.normal(size=n)
    brca1 = 0.8 * esr1 + 0.7 * gata3 + rng.normal(size=n)
    tp53 = 0.9 * brca1 + 0.6 * erbb2 + rng.normal(size=n)
    mdm2 = 0.8 * tp53 + rng.normal(size=n)
    df = pd.DataFrame({
        "ESR1": esr1, "GATA3": gata3, "BRCA1": brca1, "ERBB2": erbb2,
        "TP53": tp53, "MDM2": mdm2, "KRT5": krt5,
    })
    return df[GENES]


@pytest.fixture(scope="session")
def sem_data():
    return simulate(2000)


@pytest.fixture(scope="session")
def small_sem_data():
    return simulate(300, seed=7)


@pytest.fixture
def true_cpdag():
    # every edge is compelled: two v-structures plus one Meek orientation
    return CPDAG(GENES, directed=TRUE_EDGES)


@pytest.fixture
def raw_expression():
    """Samples x genes with an id column, a label column and bad genes"""
    rng = np.random.RandomState(0)
    n = 60
    df = pd.DataFrame({
        "sample_id": [f"S{i:03d}" for i in range(n)],
        "ESR1": rng.lognormal(mean=6, sigma=0.5, size=n),
        "GATA3": rng.lognormal(mean=5, sigma=0.5, size=n),
        "BRCA1": rng.lognormal(mean=4, sigma=0.5, size=n),
        "CONST": np.full(n, 7.0),
        "SPARSE": [np.nan] * 30 + list(rng.normal(size=30)),
        "subtype": rng.choice(["LumA", "Basal"], size=n),
    })
    df.loc[3, "BRCA1"] = np.nan
    return df
