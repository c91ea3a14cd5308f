import numpy as np
import pytest

from supervised_ml.chapters.generalized_linear_models import (
    classification_report,
    deviance_test,
    dispersion,
    encode_default,
    fit_logistic,
    fit_poisson,
    odds_ratios,
)
from supervised_ml.chapters.linear_regression import (
    MULTIPLE_FORMULA,
    SIMPLE_FORMULA,
    bootstrap_slope,
    compare_nested,
    cv_rmse,
    diagnostics,
    fit_ols,
    vif_table,
)
from supervised_ml.data.datasets import load_mtcars, make_default


@pytest.fixture(scope='module')
def mtcars():
    return load_mtcars()


def test_simple_ols_matches_textbook(mtcars):
    results = fit_ols(mtcars, SIMPLE_FORMULA)
    assert results.params['wt'] == pytest.approx(-5.3445, abs=1e-3)
    assert results.params['Intercept'] == pytest.approx(37.285, abs=1e-2)
    assert results.rsquared == pytest.approx(0.7528, abs=1e-3)


def test_diagnostics_keys_and_ranges(mtcars):
    diag = diagnostics(fit_ols(mtcars, MULTIPLE_FORMULA))
    assert 0 <= diag['shapiro_p'] <= 1
    assert 0 <= diag['breusch_pagan_p'] <= 1
    assert 0 < diag['durbin_watson'] < 4
    assert diag['max_cooks_distance'] > 0
    assert diag['most_influential'] in mtcars.index
    assert set(diag['high_leverage']) <= set(mtcars.index)


def test_vif_table(mtcars):
    vifs = vif_table(mtcars, ['wt', 'hp', 'am'])
    assert set(vifs.index) == {'wt', 'hp', 'am'}
    assert (vifs >= 1).all()


def test_vif_of_near_duplicate_is_large(mtcars):
    df = mtcars.assign(wt_copy=mtcars['wt'] * 1.001 + np.linspace(0, 0.001, len(mtcars)))
    vifs = vif_table(df, ['wt', 'wt_copy', 'hp'])
    assert vifs['wt'] > 100


def test_nested_comparison_prefers_multiple(mtcars):
    comparison = compare_nested(fit_ols(mtcars, SIMPLE_FORMULA), fit_ols(mtcars, MULTIPLE_FORMULA))
    assert comparison['f_stat'] > 0
    assert comparison['p_value'] < 0.05


def test_cv_rmse_multiple_beats_intercept_scale(mtcars):
    rmse, sd = cv_rmse(mtcars, ['wt', 'hp'], 'mpg', folds=4, random_state=0)
    assert 0 < rmse < mtcars['mpg'].std()
    assert sd >= 0


@pytest.fixture(scope='module')
def default_logit():
    df = encode_default(make_default(n=10000, random_state=42))
    return df, fit_logistic(df)


def test_encode_default():
    df = encode_default(make_default(n=100, random_state=0))
    assert set(df['default'].unique()) <= {0, 1}


def test_logistic_recovers_balance_effect(default_logit):
    _, results = default_logit
    assert results.params['balance'] == pytest.approx(5.737e-3, abs=1.5e-3)


def test_odds_ratios_are_exponentiated(default_logit):
    _, results = default_logit
    table = odds_ratios(results)
    np.testing.assert_allclose(table['odds_ratio'], np.exp(results.params))
    assert (table['ci_lower'] <= table['odds_ratio']).all()
    assert (table['odds_ratio'] <= table['ci_upper']).all()


def test_deviance_test_rejects_null(default_logit):
    _, results = default_logit
    test = deviance_test(results)
    assert test['df'] == 3
    assert test['p_value'] < 1e-10


def test_classification_report_on_fitted_model(default_logit):
    df, results = default_logit
    report = classification_report(df['default'], results.predict(df), threshold=0.5)
    assert report['accuracy'] > 0.9
    assert report['auc'] > 0.85


def test_poisson_dispersion(mtcars):
    results = fit_poisson(mtcars)
    assert 'hp' in results.params.index
    assert dispersion(results) > 0


def test_bootstrap_slope_brackets_the_ols_slope(mtcars):
    boot = bootstrap_slope(mtcars, 'wt', 'mpg', n_boot=400, random_state=3)
    ols = fit_ols(mtcars, SIMPLE_FORMULA)
    assert boot['estimate'] == pytest.approx(ols.params['wt'])
    assert boot['lower'] < ols.params['wt'] < boot['upper']
    assert boot['upper'] < 0
    # resampling spread is in the same ballpark as the model-based standard error
    assert 0.5 * ols.bse['wt'] < boot['se'] < 2.5 * ols.bse['wt']


def test_bootstrap_slope_is_reproducible(mtcars):
    a = bootstrap_slope(mtcars, 'wt', 'mpg', n_boot=50, random_state=9)
    b = bootstrap_slope(mtcars, 'wt', 'mpg', n_boot=50, random_state=9)
    assert a == b
