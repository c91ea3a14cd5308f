from types import SimpleNamespace

import numpy as np
import pandas as pd
import pytest
import statsmodels.formula.api as smf

from supervised_ml.chapters.emmeans import (
    estimated_marginal_means,
    fit_pigs,
    grid_design,
    pairwise_contrasts,
    raw_marginal_means,
    reference_grid,
)
from supervised_ml.data.datasets import make_pigs


@pytest.fixture(scope='module')
def pigs():
    return make_pigs(random_state=42)


@pytest.fixture(scope='module')
def pigs_model(pigs):
    return fit_pigs(pigs)


@pytest.fixture(scope='module')
def balanced():
    rng = np.random.default_rng(0)
    rows = [
        {'a': a, 'b': b, 'y': rng.normal({'x': 1, 'y': 2, 'z': 4}[a] + (0.5 if b == 'hi' else 0), 0.3)}
        for a in ['x', 'y', 'z'] for b in ['lo', 'hi'] for _ in range(3)
    ]
    df = pd.DataFrame(rows)
    return df, smf.ols('y ~ a + b', data=df).fit()


def test_reference_grid_is_full_cross(pigs):
    grid = reference_grid(pigs, ['source', 'percent'])
    assert len(grid) == 12
    assert list(grid['source'].cat.categories) == ['fish', 'soy', 'skim']
    assert sorted(grid['percent'].unique()) == [9, 12, 15, 18]
    assert not grid.duplicated().any()


def test_emms_equal_fitted_level_means_when_balanced(balanced):
    df, model = balanced
    emm = estimated_marginal_means(model, df, 'a', ['a', 'b'])
    fitted_means = model.fittedvalues.groupby(df['a']).mean()
    for _, row in emm.table.iterrows():
        assert row['emmean'] == pytest.approx(fitted_means[row['a']])


def test_emm_table_columns_and_intervals(pigs, pigs_model):
    emm = estimated_marginal_means(pigs_model, pigs, 'source', ['source', 'percent'], transform='log')
    t = emm.table
    assert list(t['source']) == ['fish', 'soy', 'skim']
    assert (t['se'] > 0).all()
    assert (t['lower'] < t['emmean']).all() and (t['emmean'] < t['upper']).all()
    np.testing.assert_allclose(t['response'], np.exp(t['emmean']))
    assert (t['df'] == pigs_model.df_resid).all()


def test_emm_differs_from_raw_mean_when_unbalanced(pigs, pigs_model):
    emm = estimated_marginal_means(pigs_model, pigs, 'source', ['source', 'percent'])
    raw = raw_marginal_means(pigs.assign(log_conc=np.log(pigs['conc'])), 'source', 'log_conc')
    assert not np.allclose(emm.table['emmean'].to_numpy(), raw.to_numpy())


def test_emm_contrast_matches_model_coefficient(pigs, pigs_model):
    # In an additive model, the difference of two source EMMs is the source coefficient
    emm = estimated_marginal_means(pigs_model, pigs, 'source', ['source', 'percent'])
    contrasts = pairwise_contrasts(emm, 'none').set_index('contrast')
    assert contrasts.loc['fish - soy', 'estimate'] == pytest.approx(-pigs_model.params['source[T.soy]'])
    assert contrasts.loc['fish - soy', 'se'] == pytest.approx(pigs_model.bse['source[T.soy]'])


@pytest.mark.parametrize('adjust', ['tukey', 'holm', 'bonferroni'])
def test_adjusted_pvalues_are_not_smaller(pigs, pigs_model, adjust):
    emm = estimated_marginal_means(pigs_model, pigs, 'percent', ['source', 'percent'])
    contrasts = pairwise_contrasts(emm, adjust)
    assert len(contrasts) == 4 * 3 // 2
    assert (contrasts['p_adj'] >= contrasts['p_raw'] - 1e-12).all()
    assert (contrasts['p_adj'] <= 1.0 + 1e-12).all()


def test_log_contrasts_back_transform_to_ratios(pigs, pigs_model):
    emm = estimated_marginal_means(pigs_model, pigs, 'source', ['source', 'percent'], transform='log')
    contrasts = pairwise_contrasts(emm)
    np.testing.assert_allclose(contrasts['ratio'], np.exp(contrasts['estimate']))


def test_invalid_arguments(pigs, pigs_model):
    with pytest.raises(ValueError):
        estimated_marginal_means(pigs_model, pigs, 'weight', ['source', 'percent'])
    with pytest.raises(ValueError):
        estimated_marginal_means(pigs_model, pigs, 'source', ['source', 'percent'], transform='sqrt')
    emm = estimated_marginal_means(pigs_model, pigs, 'source', ['source', 'percent'])
    with pytest.raises(ValueError, match='Unknown adjustment'):
        pairwise_contrasts(emm, 'scheffe')


def test_grid_design_matches_fitted_columns(pigs, pigs_model):
    grid = reference_grid(pigs, ['source', 'percent'])
    X = grid_design(pigs_model, pigs, grid)
    assert X.shape == (12, len(pigs_model.params))
    np.testing.assert_allclose(X @ pigs_model.params.to_numpy(), pigs_model.predict(grid).to_numpy())


def test_grid_design_needs_only_the_formula(balanced):
    # Only the formula and the coefficients are read from the fitted model
    df, model = balanced
    bare = SimpleNamespace(model=SimpleNamespace(formula='y ~ a + b'), params=model.params)
    X = grid_design(bare, df, reference_grid(df, ['a', 'b']))
    assert X.shape == (6, 4)
    np.testing.assert_allclose(X[:, 0], 1.0)
