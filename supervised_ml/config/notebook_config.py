# config/notebook_config.py
import os
from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass
class RegularizationConfig:
    """Penalty grids for ridge / lasso / elastic net"""
    n_alphas: int = 60
    alpha_min_exp: float = -3.0
    alpha_max_exp: float = 3.0
    l1_ratios: List[float] = None
    max_iter: int = 50000

    def __post_init__(self):
        if self.l1_ratios is None:
            self.l1_ratios = [0.1, 0.3, 0.5, 0.7, 0.9]


@dataclass
class SVMConfig:
    """Grid search settings for the SVM chapter"""
    sample_size: int = 1500
    linear_grid: Dict[str, list] = None
    radial_grid: Dict[str, list] = None

    def __post_init__(self):
        if self.linear_grid is None:
            self.linear_grid = {'svc__C': [0.01, 0.1, 1, 10]}
        if self.radial_grid is None:
            self.radial_grid = {
                'svc__C': [0.1, 1, 10],
                'svc__gamma': [0.01, 0.1, 1],
            }


@dataclass
class BayesConfig:
    """Priors for the conjugate Bayesian regression chapter"""
    n_draws: int = 4000
    cred_mass: float = 0.95
    # Vague prior: wide normal on coefficients, weak inverse gamma on sigma^2
    vague_scale: float = 1e6
    a0: float = 0.01
    b0: float = 0.01
    # Informative prior on the wt slope (mpg per 1000 lbs)
    informative_slope_mean: float = -3.0
    informative_slope_sd: float = 0.5
    # Conjugate priors are conditional on sigma^2; a rough residual sd converts
    # the slope sd above into a prior scale
    prior_sigma_guess: float = 3.0


@dataclass
class EmmeansConfig:
    """Settings for estimated marginal means"""
    adjust: str = 'tukey'
    level: float = 0.95


@dataclass
class NotebookConfig:
    """Run-wide configuration shared by every chapter"""
    output_dir: str = 'notebook_output'
    random_state: int = 42
    test_size: float = 0.3
    cv_folds: int = 5
    save_models: bool = True
    verbose: bool = False
    rt_csv: Optional[str] = None
    n_bootstrap: int = 1000

    regularization: RegularizationConfig = None
    svm: SVMConfig = None
    bayes: BayesConfig = None
    emmeans: EmmeansConfig = None

    def __post_init__(self):
        if self.regularization is None:
            self.regularization = RegularizationConfig()
        if self.svm is None:
            self.svm = SVMConfig()
        if self.bayes is None:
            self.bayes = BayesConfig()
        if self.emmeans is None:
            self.emmeans = EmmeansConfig()
        if not 0.0 < self.test_size < 1.0:
            raise ValueError(f"test_size must be in (0, 1), got {self.test_size}")
        if self.n_bootstrap < 1:
            raise ValueError(f"n_bootstrap must be positive, got {self.n_bootstrap}")
        if self.cv_folds < 2:
            raise ValueError(f"cv_folds must be at least 2, got {self.cv_folds}")

    @classmethod
    def from_env(cls, **overrides):
        """Build a config from SML_* environment variables, then apply overrides."""
        values = {
            'output_dir': os.getenv('SML_OUTPUT_DIR', cls.output_dir),
            'random_state': int(os.getenv('SML_RANDOM_STATE', cls.random_state)),
            'rt_csv': os.getenv('SML_RT_CSV', None),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
