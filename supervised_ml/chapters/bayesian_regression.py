# chapters/bayesian_regression.py
"""
Chapter 8: Bayesian Regression

A Gaussian linear model with a conjugate normal-inverse-gamma prior:

    y | beta, sigma^2  ~ N(X beta, sigma^2 I)
    beta | sigma^2     ~ N(m0, sigma^2 V0)
    sigma^2            ~ InvGamma(a0, b0)

The posterior is again normal-inverse-gamma, so exact draws replace MCMC.
A vague prior reproduces OLS; an informative prior on the weight slope pulls
the estimate toward prior knowledge, more strongly the less data there is.
"""
import logging
from dataclasses import dataclass

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
import statsmodels.formula.api as smf
from scipy import stats
from sklearn.linear_model import BayesianRidge

from supervised_ml.data.datasets import load_mtcars
from supervised_ml.reporting.report import ChapterReport

logger = logging.getLogger(__name__)

CHAPTER = 'bayesian_regression'


@dataclass
class NIGPrior:
    m0: np.ndarray
    V0: np.ndarray
    a0: float
    b0: float


@dataclass
class NIGPosterior:
    mn: np.ndarray
    Vn: np.ndarray
    an: float
    bn: float


def design(df, predictors):
    """Design matrix with a leading intercept column."""
    X = np.column_stack([np.ones(len(df))] + [df[p].to_numpy(dtype=float) for p in predictors])
    return X, ['Intercept'] + list(predictors)


def vague_prior(p, scale=1e6, a0=0.01, b0=0.01):
    return NIGPrior(m0=np.zeros(p), V0=np.eye(p) * scale, a0=a0, b0=b0)


def conjugate_posterior(X, y, prior):
    """Closed-form normal-inverse-gamma update."""
    X = np.asarray(X, dtype=float)
    y = np.asarray(y, dtype=float)
    if X.shape[0] != y.shape[0]:
        raise ValueError(f"X has {X.shape[0]} rows but y has {y.shape[0]}")

    V0_inv = np.linalg.inv(prior.V0)
    Vn_inv = V0_inv + X.T @ X
    Vn = np.linalg.inv(Vn_inv)
    mn = Vn @ (V0_inv @ prior.m0 + X.T @ y)
    an = prior.a0 + len(y) / 2.0
    bn = prior.b0 + 0.5 * float(y @ y + prior.m0 @ V0_inv @ prior.m0 - mn @ Vn_inv @ mn)
    return NIGPosterior(mn=mn, Vn=Vn, an=an, bn=bn)


def sample_posterior(post, n_draws=4000, random_state=42):
    """Exact joint draws: sigma^2 from its inverse gamma, then beta given sigma^2."""
    rng = np.random.default_rng(random_state)
    sigma2 = stats.invgamma.rvs(post.an, scale=post.bn, size=n_draws, random_state=rng)
    L = np.linalg.cholesky(post.Vn)
    z = rng.standard_normal((n_draws, len(post.mn)))
    beta = post.mn + np.sqrt(sigma2)[:, None] * (z @ L.T)
    return {'beta': beta, 'sigma2': sigma2}


def posterior_summary(draws, names, cred_mass=0.95):
    tail = (1 - cred_mass) / 2
    samples = pd.DataFrame(draws['beta'], columns=names)
    samples['sigma'] = np.sqrt(draws['sigma2'])
    return pd.DataFrame({
        'mean': samples.mean(),
        'sd': samples.std(),
        'lower': samples.quantile(tail),
        'upper': samples.quantile(1 - tail),
    })


def posterior_predictive(draws, X_new, random_state=42, cred_mass=0.95):
    """Mean and equal-tailed interval of posterior predictive draws for each new row."""
    rng = np.random.default_rng(random_state)
    mu = draws['beta'] @ np.asarray(X_new, dtype=float).T
    y_rep = mu + rng.standard_normal(mu.shape) * np.sqrt(draws['sigma2'])[:, None]
    tail = (1 - cred_mass) / 2
    return pd.DataFrame({
        'mean': y_rep.mean(axis=0),
        'lower': np.quantile(y_rep, tail, axis=0),
        'upper': np.quantile(y_rep, 1 - tail, axis=0),
    })


def informative_prior(bayes_cfg, p=2):
    """Vague intercept, informative slope for a one-predictor model."""
    prior = vague_prior(p, bayes_cfg.vague_scale, bayes_cfg.a0, bayes_cfg.b0)
    prior.m0[1] = bayes_cfg.informative_slope_mean
    prior.V0[1, 1] = (bayes_cfg.informative_slope_sd / bayes_cfg.prior_sigma_guess) ** 2
    return prior


def run(config):
    report = ChapterReport(CHAPTER, config.output_dir, config.save_models)
    bayes = config.bayes
    df = load_mtcars()
    X, names = design(df, ['wt'])
    y = df['mpg'].to_numpy()

    report.section("1. Frequentist baseline")
    ols = smf.ols('mpg ~ wt', data=df).fit()
    report.table('ols', pd.DataFrame({'estimate': ols.params, 'se': ols.bse}).round(4))

    report.section("2. Vague prior")
    vague_draws = sample_posterior(
        conjugate_posterior(X, y, vague_prior(X.shape[1], bayes.vague_scale, bayes.a0, bayes.b0)),
        bayes.n_draws, config.random_state,
    )
    vague_summary = posterior_summary(vague_draws, names, bayes.cred_mass)
    report.table('vague_posterior', vague_summary.round(4))
    report.metric('vague_slope_mean', float(vague_summary.loc['wt', 'mean']))
    report.narrate("With a vague prior the posterior mean matches OLS and the credible interval matches the confidence interval.")

    report.section("3. Informative prior on the weight slope")
    report.text(f"Prior: slope ~ N({bayes.informative_slope_mean}, {bayes.informative_slope_sd}^2) (on the scale sigma = {bayes.prior_sigma_guess})")
    inform_draws = sample_posterior(conjugate_posterior(X, y, informative_prior(bayes, X.shape[1])), bayes.n_draws, config.random_state)
    inform_summary = posterior_summary(inform_draws, names, bayes.cred_mass)
    report.table('informative_posterior', inform_summary.round(4))
    report.metric('informative_slope_mean', float(inform_summary.loc['wt', 'mean']))
    report.metric('prob_slope_below_minus4', float(np.mean(inform_draws['beta'][:, 1] < -4)))
    report.narrate(
        f"The posterior slope moves from {vague_summary.loc['wt', 'mean']:.2f} toward the prior mean "
        f"{bayes.informative_slope_mean}, landing at {inform_summary.loc['wt', 'mean']:.2f}.",
        f"P(slope < -4 | data) = {np.mean(inform_draws['beta'][:, 1] < -4):.3f}: a direct probability statement a p-value cannot give.",
    )

    report.section("4. Posterior predictive")
    new_wt = pd.DataFrame({'wt': [2.0, 3.0, 4.0]})
    X_new, _ = design(new_wt, ['wt'])
    predictive = posterior_predictive(vague_draws, X_new, config.random_state, bayes.cred_mass)
    predictive.index = [f"wt = {w}" for w in new_wt['wt']]
    report.table('predictive', predictive.round(2))

    report.section("5. Empirical Bayes: BayesianRidge")
    ridge = BayesianRidge().fit(df[['wt']], y)
    comparison = pd.DataFrame({
        'ols': ols.params.values,
        'conjugate (vague)': vague_summary.loc[names, 'mean'].values,
        'conjugate (informative)': inform_summary.loc[names, 'mean'].values,
        'BayesianRidge': [ridge.intercept_, ridge.coef_[0]],
    }, index=names)
    report.table('comparison', comparison.round(4))
    report.narrate("BayesianRidge estimates its prior precision from the data (evidence maximization), so it shrinks only slightly.")

    fig, ax = plt.subplots(figsize=(9, 6))
    sns.kdeplot(vague_draws['beta'][:, 1], ax=ax, label='vague prior', fill=True)
    sns.kdeplot(inform_draws['beta'][:, 1], ax=ax, label='informative prior', fill=True)
    prior_grid = np.linspace(-8, 0, 300)
    ax.plot(prior_grid, stats.norm.pdf(prior_grid, bayes.informative_slope_mean, bayes.informative_slope_sd),
            color='black', linestyle='--', label='informative prior (approx.)')
    ax.set_title('Posterior of the weight slope')
    ax.set_xlabel('mpg per 1000 lbs')
    ax.legend()
    report.figure(fig, 'slope_posterior.png')

    report.save_model(ridge, 'bayesian_ridge.joblib')
    return report.finish()
