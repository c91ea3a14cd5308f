"""Pytest session setup: make the repo root importable and provide a fast config."""

import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from supervised_ml.config.notebook_config import NotebookConfig, RegularizationConfig, SVMConfig  # noqa: E402


@pytest.fixture
def fast_config(tmp_path):
    """Small grids and folds so chapter runs stay quick."""
    return NotebookConfig(
        output_dir=str(tmp_path / "out"),
        random_state=7,
        cv_folds=3,
        save_models=False,
        n_bootstrap=200,
        regularization=RegularizationConfig(n_alphas=15, l1_ratios=[0.5, 0.9]),
        svm=SVMConfig(
            sample_size=600,
            linear_grid={'svc__C': [0.1, 1]},
            radial_grid={'svc__C': [1], 'svc__gamma': [0.1, 1]},
        ),
    )
