# chapters/linear_mixed_effects.py
"""
Chapter 3: Linear Mixed Effects Models

Repeated measures break the independence assumption of OLS: trials from the
same subject are correlated. A random intercept per subject absorbs baseline
speed differences, and a random slope lets the condition effect vary by
subject. Nested random-effect structures are compared with likelihood-ratio
tests on ML (not REML) fits.
"""
import logging
import warnings

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from scipy import stats
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from supervised_ml.data.datasets import RT_COLUMNS, load_response_times, make_response_times, require_columns
from supervised_ml.reporting.report import ChapterReport

logger = logging.getLogger(__name__)

CHAPTER = 'linear_mixed_effects'
FORMULA = 'rt ~ condition'


def _fit_mixed(df, re_formula, reml):
    model = smf.mixedlm(FORMULA, df, groups=df['subject'], re_formula=re_formula)
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always', ConvergenceWarning)
        results = model.fit(reml=reml)
    messages = []
    for caught_warning in caught:
        logger.warning(f"MixedLM ({re_formula}): {caught_warning.category.__name__}: {caught_warning.message}")
        if issubclass(caught_warning.category, ConvergenceWarning):
            messages.append(str(caught_warning.message))
        else:
            warnings.warn_explicit(
                caught_warning.message, caught_warning.category, caught_warning.filename, caught_warning.lineno
            )
    results.convergence_warnings = messages
    return results


def fit_pooled(df):
    """OLS that ignores the subject grouping."""
    return smf.ols(FORMULA, data=df).fit()


def fit_random_intercept(df, reml=True):
    return _fit_mixed(df, '1', reml)


def fit_random_slope(df, reml=True):
    return _fit_mixed(df, '~condition', reml)


def icc(results):
    """Share of total variance attributable to subjects (random-intercept model)."""
    tau2 = float(results.cov_re.iloc[0, 0])
    sigma2 = float(results.scale)
    return tau2 / (tau2 + sigma2)


def likelihood_ratio_test(restricted, full, df_diff):
    """
    LR test between two nested models fitted by maximum likelihood.

    Testing a variance component sits on the boundary of the parameter space,
    so the chi2 p-value is conservative.
    """
    stat = max(2.0 * (full.llf - restricted.llf), 0.0)
    return {
        'chi2': float(stat),
        'df': int(df_diff),
        'p_value': float(stats.chi2.sf(stat, df_diff)),
    }


def random_effects_table(results):
    """Per-subject predicted random effects (BLUPs)."""
    table = pd.DataFrame(results.random_effects).T
    table.index.name = 'subject'
    table = table.rename(columns={'Group': 'intercept'})
    return table.sort_values(table.columns[0])


def _load(config):
    if config.rt_csv:
        return load_response_times(config.rt_csv)
    return make_response_times(random_state=config.random_state)


def run(config):
    report = ChapterReport(CHAPTER, config.output_dir, config.save_models)
    df = _load(config)
    require_columns(df, RT_COLUMNS, name='response times')

    report.section("1. The experiment")
    report.text(f"{df['subject'].nunique()} subjects, {len(df)} trials")
    cell_means = df.groupby(['subject', 'condition'])['rt'].mean().unstack()
    report.table('cell_means', cell_means.describe().round(1))

    report.section("2. Pooled OLS (ignores subjects)")
    pooled = fit_pooled(df)
    report.text(str(pooled.summary().tables[1]))
    effect_name = [name for name in pooled.params.index if name.startswith('condition')][0]
    report.metric('pooled_effect', float(pooled.params[effect_name]))
    report.metric('pooled_se', float(pooled.bse[effect_name]))

    report.section("3. Random intercept model")
    ri = fit_random_intercept(df)
    report.text(str(ri.summary()))
    subject_icc = icc(ri)
    report.metric('icc', subject_icc)
    report.metric('ri_effect', float(ri.fe_params[effect_name]))
    report.metric('ri_se', float(ri.bse_fe[effect_name]))
    report.narrate(
        f"Subjects account for {subject_icc:.1%} of the variance in response time (ICC).",
        f"The condition effect is {ri.fe_params[effect_name]:.1f} ms; its standard error changes from "
        f"{pooled.bse[effect_name]:.2f} (pooled) to {ri.bse_fe[effect_name]:.2f} once trials are grouped by subject.",
    )

    report.section("4. Random slope model")
    rs = fit_random_slope(df)
    report.text(str(rs.summary()))
    report.metric('rs_effect', float(rs.fe_params[effect_name]))
    report.metric('convergence_warnings', len(ri.convergence_warnings) + len(rs.convergence_warnings))

    report.section("5. Likelihood-ratio tests (ML fits)")
    pooled_ml = pooled  # OLS is already the ML fit
    ri_ml = fit_random_intercept(df, reml=False)
    rs_ml = fit_random_slope(df, reml=False)
    lrt_intercept = likelihood_ratio_test(pooled_ml, ri_ml, df_diff=1)
    lrt_slope = likelihood_ratio_test(ri_ml, rs_ml, df_diff=2)
    lrt_table = pd.DataFrame(
        [lrt_intercept, lrt_slope],
        index=['pooled vs random intercept', 'random intercept vs random slope'],
    )
    report.table('lrt', lrt_table.round(4))
    report.metric('lrt_intercept_p', lrt_intercept['p_value'])
    report.metric('lrt_slope_p', lrt_slope['p_value'])
    report.table('aic', pd.Series({
        'pooled': pooled_ml.aic, 'random intercept': ri_ml.aic, 'random slope': rs_ml.aic,
    }, name='AIC').round(1))
    if lrt_slope['p_value'] < 0.05:
        report.narrate("Subjects differ reliably in how much incongruence slows them down; keep the random slope.")
    else:
        report.narrate("No evidence that the condition effect varies by subject; the random intercept model suffices.")

    report.section("6. Subject-level effects")
    blups = random_effects_table(ri)
    report.table('blups', blups.round(2))

    fig, ax = plt.subplots(figsize=(8, 6))
    for _, row in cell_means.iterrows():
        ax.plot(cell_means.columns, row.values, color='grey', alpha=0.5, marker='o')
    ax.plot(cell_means.columns, cell_means.mean().values, color='red', linewidth=3, marker='o', label='Grand mean')
    ax.set_title('Per-subject mean response time by condition')
    ax.set_ylabel('Response time (ms)')
    ax.legend()
    report.figure(fig, 'subject_means.png')

    intercepts = blups.iloc[:, 0]
    # Conditional variance of a random intercept: tau2 * sigma2 / (n_i * tau2 + sigma2)
    tau2, sigma2 = float(ri.cov_re.iloc[0, 0]), float(ri.scale)
    n_i = df.groupby('subject').size().reindex(intercepts.index).values
    half_width = 1.96 * np.sqrt(tau2 * sigma2 / (n_i * tau2 + sigma2))
    fig, ax = plt.subplots(figsize=(8, 8))
    ax.errorbar(intercepts.values, np.arange(len(intercepts)), xerr=half_width, fmt='o', capsize=3)
    ax.axvline(0, color='red', linestyle='--')
    ax.set_yticks(np.arange(len(intercepts)))
    ax.set_yticklabels(intercepts.index)
    ax.set_title('Random intercepts (caterpillar plot)')
    ax.set_xlabel('Deviation from the average subject (ms)')
    report.figure(fig, 'caterpillar.png')

    report.save_model(ri, 'random_intercept.joblib')
    return report.finish()
