import matplotlib
import numpy as np
import pandas as pd
import pytest

matplotlib.use("Agg")


def make_module_expression(module_sizes=(40, 30, 20), n_noise=20, n_samples=40, loading=0.9, noise=0.35,
                           shift=None, seed=0):
    """
    samples x genes matrix where genes of a module follow a shared latent factor
    """
    rng = np.random.default_rng(seed)
    columns = []
    truth = []
    latent = {}
    for m, size in enumerate(module_sizes):
        z = rng.normal(size=n_samples)
        if shift is not None and m == 0:
            z = z + shift
        latent[m] = z
        for g in range(size):
            columns.append(loading * z + rng.normal(scale=noise, size=n_samples))
            truth.append(m + 1)
    for g in range(n_noise):
        columns.append(rng.normal(size=n_samples))
        truth.append(0)

    genes = [f"ENSG{i:06d}" for i in range(len(columns))]
    samples = [f"S{i:02d}" for i in range(n_samples)]
    datExpr = pd.DataFrame(np.column_stack(columns), index=samples, columns=genes)
    return datExpr, np.array(truth), latent


@pytest.fixture
def module_expression():
    return make_module_expression()


def make_cohort(n_samples=40, module_sizes=(50, 35, 25), n_noise=20, n_low=5, seed=1):
    """
    negative binomial counts (genes x samples) with co-expression modules and matching sample information,
    the first module is shifted in SCZ samples
    """
    rng = np.random.default_rng(seed)
    samples = [f"S{i:02d}" for i in range(n_samples)]
    diagnosis = np.array(['Control', 'SCZ'] * (n_samples // 2))
    ethnicity = rng.choice(['European', 'African American'], size=n_samples)
    ethnicity[:2] = ['European', 'African American']

    logMeans = []
    for m, size in enumerate(module_sizes):
        z = rng.normal(size=n_samples)
        if m == 0:
            z = z + 1.5 * (diagnosis == 'SCZ')
        for g in range(size):
            logMeans.append(np.log(200) + 0.8 * z + rng.normal(scale=0.1, size=n_samples))
    for g in range(n_noise):
        logMeans.append(np.log(200) + rng.normal(scale=0.8, size=n_samples))
    for g in range(n_low):
        logMeans.append(np.repeat(0.0, n_samples))

    mu = np.exp(np.vstack(logMeans))
    size = 20
    counts = rng.negative_binomial(size, size / (size + mu))
    genes = [f"ENSG{i:06d}" for i in range(counts.shape[0])]
    counts = pd.DataFrame(counts, index=genes, columns=samples)

    sampleInfo = pd.DataFrame({'sample_id': samples,
                               'diagnosis': diagnosis,
                               'ethnicity': ethnicity,
                               'age': rng.integers(20, 80, size=n_samples)})
    return counts, sampleInfo


@pytest.fixture
def cohort():
    return make_cohort()
