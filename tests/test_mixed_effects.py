import warnings
from types import SimpleNamespace

import pytest
from statsmodels.regression.mixed_linear_model import MixedLM
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from supervised_ml.chapters.linear_mixed_effects import (
    fit_pooled,
    fit_random_intercept,
    fit_random_slope,
    icc,
    likelihood_ratio_test,
    random_effects_table,
)
from supervised_ml.data.datasets import make_response_times


@pytest.fixture(scope='module')
def rt():
    return make_response_times(n_subjects=12, n_trials=30, random_state=5)


@pytest.fixture(scope='module')
def ri_fit(rt):
    return fit_random_intercept(rt)


def test_random_intercept_recovers_condition_effect(ri_fit):
    effect = ri_fit.fe_params['condition[T.incongruent]']
    assert 0 < effect < 90


def test_icc_is_a_proportion(ri_fit):
    value = icc(ri_fit)
    assert 0 < value < 1


def test_blup_table_has_one_row_per_subject(rt, ri_fit):
    table = random_effects_table(ri_fit)
    assert len(table) == rt['subject'].nunique()
    assert 'intercept' in table.columns
    # BLUPs are shrunken deviations around zero
    assert abs(table['intercept'].mean()) < 30


def test_subject_variance_is_detected(rt):
    pooled = fit_pooled(rt)
    ri_ml = fit_random_intercept(rt, reml=False)
    test = likelihood_ratio_test(pooled, ri_ml, df_diff=1)
    assert test['chi2'] > 0
    assert test['p_value'] < 0.05


def test_likelihood_ratio_test_arithmetic():
    test = likelihood_ratio_test(SimpleNamespace(llf=-100.0), SimpleNamespace(llf=-95.0), df_diff=1)
    assert test['chi2'] == pytest.approx(10.0)
    assert test['p_value'] == pytest.approx(0.001565, abs=1e-5)


def test_likelihood_ratio_test_clips_negative_statistic():
    test = likelihood_ratio_test(SimpleNamespace(llf=-90.0), SimpleNamespace(llf=-90.5), df_diff=2)
    assert test['chi2'] == 0.0
    assert test['p_value'] == 1.0


def test_random_slope_has_two_by_two_covariance(rt):
    rs = fit_random_slope(rt)
    assert rs.cov_re.shape == (2, 2)
    assert isinstance(rs.convergence_warnings, list)
    table = random_effects_table(rs)
    assert table.shape == (rt['subject'].nunique(), 2)


def _noisy_fit(monkeypatch):
    original = MixedLM.fit

    def noisy_fit(self, *args, **kwargs):
        warnings.warn("forced non-convergence", ConvergenceWarning)
        warnings.warn("library user warning", UserWarning)
        return original(self, *args, **kwargs)

    monkeypatch.setattr(MixedLM, 'fit', noisy_fit)


def test_convergence_warnings_are_recorded(rt, monkeypatch, caplog):
    _noisy_fit(monkeypatch)
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', UserWarning)
        results = fit_random_intercept(rt)
    assert 'forced non-convergence' in results.convergence_warnings
    assert 'library user warning' not in results.convergence_warnings
    assert any('forced non-convergence' in record.getMessage() for record in caplog.records)


def test_other_fit_warnings_are_logged_and_passed_on(rt, monkeypatch, caplog):
    _noisy_fit(monkeypatch)
    with pytest.warns(UserWarning, match='library user warning'):
        fit_random_intercept(rt)
    assert any('library user warning' in record.getMessage() for record in caplog.records)
