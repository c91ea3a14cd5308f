# chapters/emmeans.py
"""
Chapter 9: Estimated Marginal Means

In an unbalanced design the raw mean of a factor level mixes in whatever
other factor levels happened to be observed with it. An estimated marginal
mean (EMM) instead averages the model's predictions over a reference grid,
the full cross of factor levels, weighting every cell equally.

For a linear model with coefficients b and covariance V, each EMM is a linear
function L b of the coefficients, so its standard error is sqrt(L V L'), and
pairwise comparisons are differences of L rows.
"""
import itertools
import logging
from dataclasses import dataclass
from typing import Optional

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from patsy import build_design_matrices, dmatrix
from scipy import stats
from statsmodels.stats.multitest import multipletests

from supervised_ml.data.datasets import make_pigs
from supervised_ml.reporting.report import ChapterReport

logger = logging.getLogger(__name__)

CHAPTER = 'emmeans'
PIGS_FORMULA = 'np.log(conc) ~ source + C(percent)'
ADJUSTMENTS = ('tukey', 'holm', 'bonferroni', 'none')


@dataclass
class EMMResult:
    table: pd.DataFrame
    L: np.ndarray
    cov: np.ndarray
    df: float
    term: str
    level: float
    transform: Optional[str] = None


def reference_grid(df, factors):
    """Every combination of the levels of `factors`, in level order."""
    levels = []
    for factor in factors:
        col = df[factor]
        if isinstance(col.dtype, pd.CategoricalDtype):
            levels.append(list(col.cat.categories))
        else:
            levels.append(sorted(col.unique()))

    grid = pd.DataFrame(list(itertools.product(*levels)), columns=list(factors))
    for factor in factors:
        if isinstance(df[factor].dtype, pd.CategoricalDtype):
            grid[factor] = pd.Categorical(grid[factor], categories=df[factor].cat.categories)
    return grid


def grid_design(results, df, grid):
    """
    Model matrix of the fitted formula evaluated on the reference grid.

    The design is rebuilt with patsy from the formula and the fitting frame,
    so categorical levels and stateful transforms match the fit.
    """
    rhs = results.model.formula.split('~', 1)[1]
    design_info = dmatrix(rhs, df, return_type='dataframe').design_info
    X = build_design_matrices([design_info], grid, return_type='dataframe')[0]
    if X.shape[1] != len(results.params):
        raise ValueError(f"Grid design has {X.shape[1]} columns but the model has {len(results.params)} coefficients")
    return np.asarray(X, dtype=float)


def estimated_marginal_means(results, df, term, factors, level=0.95, transform=None):
    """
    EMMs of `term` averaged with equal weights over the other factors.

    transform='log' adds response-scale columns (exp of the estimate and CI).
    """
    if term not in factors:
        raise ValueError(f"'{term}' must be one of the grid factors {list(factors)}")

    grid = reference_grid(df, factors)
    X = grid_design(results, df, grid)
    beta = np.asarray(results.params)
    cov = np.asarray(results.cov_params())
    dof = float(results.df_resid)

    term_levels = list(dict.fromkeys(grid[term]))
    L = np.vstack([X[(grid[term] == lvl).to_numpy()].mean(axis=0) for lvl in term_levels])

    est = L @ beta
    se = np.sqrt(np.einsum('ij,jk,ik->i', L, cov, L))
    crit = stats.t.ppf(1 - (1 - level) / 2, dof)

    table = pd.DataFrame({
        term: term_levels,
        'emmean': est,
        'se': se,
        'df': dof,
        'lower': est - crit * se,
        'upper': est + crit * se,
    })
    if transform == 'log':
        table['response'] = np.exp(table['emmean'])
        table['response_lower'] = np.exp(table['lower'])
        table['response_upper'] = np.exp(table['upper'])
    elif transform is not None:
        raise ValueError(f"Unsupported transform '{transform}'")

    return EMMResult(table=table, L=L, cov=cov, df=dof, term=term, level=level, transform=transform)


def adjust_pvalues(t_values, raw_p, adjust, n_means, dof):
    if adjust == 'tukey':
        # Studentized range with k means; |t| * sqrt(2) is the range statistic
        return stats.studentized_range.sf(np.abs(t_values) * np.sqrt(2), n_means, dof)
    if adjust in ('holm', 'bonferroni'):
        return multipletests(raw_p, method=adjust)[1]
    if adjust == 'none':
        return np.asarray(raw_p)
    raise ValueError(f"Unknown adjustment '{adjust}', expected one of {ADJUSTMENTS}")


def pairwise_contrasts(emm, adjust='tukey'):
    """All pairwise differences of the EMMs with adjusted p-values."""
    if adjust not in ADJUSTMENTS:
        raise ValueError(f"Unknown adjustment '{adjust}', expected one of {ADJUSTMENTS}")

    levels = list(emm.table[emm.term])
    est = emm.table['emmean'].to_numpy()
    rows = []
    for i, j in itertools.combinations(range(len(levels)), 2):
        d = emm.L[i] - emm.L[j]
        se = float(np.sqrt(d @ emm.cov @ d))
        diff = float(est[i] - est[j])
        rows.append({'contrast': f"{levels[i]} - {levels[j]}", 'estimate': diff, 'se': se, 't': diff / se})

    table = pd.DataFrame(rows)
    table['p_raw'] = 2 * stats.t.sf(np.abs(table['t']), emm.df)
    table['p_adj'] = adjust_pvalues(table['t'].to_numpy(), table['p_raw'].to_numpy(), adjust, len(levels), emm.df)
    if emm.transform == 'log':
        table['ratio'] = np.exp(table['estimate'])
    return table


def raw_marginal_means(df, term, response):
    return df.groupby(term, observed=True)[response].mean()


def fit_pigs(df):
    return smf.ols(PIGS_FORMULA, data=df).fit()


def run(config):
    report = ChapterReport(CHAPTER, config.output_dir, config.save_models)
    em_cfg = config.emmeans
    pigs = make_pigs(random_state=config.random_state)
    factors = ['source', 'percent']

    report.section("1. An unbalanced design")
    report.table('cell_counts', pd.crosstab(pigs['source'], pigs['percent']))
    report.narrate("Cells have different counts, so raw source means are weighted toward whichever percents were observed most.")

    report.section("2. The model")
    model = fit_pigs(pigs)
    report.text(str(model.summary().tables[1]))

    report.section("3. Reference grid")
    grid = reference_grid(pigs, factors)
    grid['prediction'] = np.exp(model.predict(grid))
    report.table('reference_grid', grid.round(2))

    report.section("4. EMMs for source")
    emm_source = estimated_marginal_means(model, pigs, 'source', factors, em_cfg.level, transform='log')
    report.table('emm_source', emm_source.table.round(4))
    report.metric('emm_source_response', dict(zip(emm_source.table['source'], emm_source.table['response'])))

    raw = np.exp(raw_marginal_means(pigs.assign(log_conc=np.log(pigs['conc'])), 'source', 'log_conc'))
    side_by_side = pd.DataFrame({
        'raw (geometric) mean': raw.values,
        'EMM (response scale)': emm_source.table['response'].values,
    }, index=emm_source.table['source'])
    report.table('raw_vs_emm', side_by_side.round(2))
    report.narrate("The EMMs correct the raw means for the uneven mix of protein percentages within each source.")

    report.section(f"5. Pairwise comparisons ({em_cfg.adjust} adjustment)")
    contrasts = pairwise_contrasts(emm_source, em_cfg.adjust)
    report.table('source_contrasts', contrasts.round(4))
    report.metric('n_significant_contrasts', int((contrasts['p_adj'] < 0.05).sum()))
    report.narrate("On the log scale, differences back-transform to ratios: a ratio of 0.8 means 20% lower concentration.")

    report.section("6. EMMs for percent")
    emm_percent = estimated_marginal_means(model, pigs, 'percent', factors, em_cfg.level, transform='log')
    report.table('emm_percent', emm_percent.table.round(4))
    report.table('percent_contrasts', pairwise_contrasts(emm_percent, 'holm').round(4))

    fig, ax = plt.subplots(figsize=(8, 5))
    t = emm_source.table
    ax.errorbar(
        t['source'].astype(str), t['response'],
        yerr=[t['response'] - t['response_lower'], t['response_upper'] - t['response']],
        fmt='o', capsize=6, markersize=8,
    )
    ax.scatter(side_by_side.index.astype(str), side_by_side['raw (geometric) mean'], marker='x', color='red', label='raw mean')
    ax.set_title(f"Estimated marginal means of concentration ({int(em_cfg.level * 100)}% CI)")
    ax.set_xlabel('Protein source')
    ax.set_ylabel('Leucine concentration')
    ax.legend()
    report.figure(fig, 'emm_source.png')

    report.save_model(model, 'pigs_ols.joblib')
    return report.finish()
