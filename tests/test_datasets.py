import numpy as np
import pandas as pd
import pytest

from supervised_ml.data.datasets import (
    PIGS_PERCENTS,
    PIGS_SOURCES,
    load_mtcars,
    load_response_times,
    make_default,
    make_pigs,
    make_response_times,
    require_columns,
)


def test_mtcars_shape_and_known_values():
    df = load_mtcars()
    assert df.shape == (32, 11)
    assert df.index.name == 'model'
    assert df.loc['Mazda RX4', 'mpg'] == 21.0
    assert df.loc['Toyota Corolla', 'mpg'] == 33.9
    assert df['am'].dtype.kind == 'i'
    assert set(df['cyl'].unique()) == {4, 6, 8}


def test_default_simulation_is_reproducible_and_in_domain():
    a = make_default(n=2000, random_state=1)
    b = make_default(n=2000, random_state=1)
    pd.testing.assert_frame_equal(a, b)

    assert list(a.columns) == ['default', 'student', 'balance', 'income']
    assert set(a['default']) <= {'No', 'Yes'}
    assert set(a['student']) <= {'No', 'Yes'}
    assert (a['balance'] >= 0).all()
    assert (a['income'] > 0).all()


def test_default_rate_is_small():
    df = make_default(n=10000, random_state=42)
    rate = (df['default'] == 'Yes').mean()
    assert 0.005 < rate < 0.1


def test_default_seed_changes_data():
    assert not make_default(n=500, random_state=1).equals(make_default(n=500, random_state=2))


def test_pigs_design():
    df = make_pigs(random_state=3)
    assert len(df) == 29
    assert list(df['source'].cat.categories) == PIGS_SOURCES
    assert set(df['percent']) == set(PIGS_PERCENTS)
    assert (df['conc'] > 0).all()
    counts = pd.crosstab(df['source'], df['percent'])
    assert counts.values.min() >= 1
    # unbalanced on purpose
    assert counts.values.min() != counts.values.max()


def test_response_times_structure():
    df = make_response_times(n_subjects=5, n_trials=10, random_state=0)
    assert len(df) == 50
    assert df['subject'].nunique() == 5
    per_subject = df.groupby(['subject', 'condition']).size().unstack()
    assert (per_subject['congruent'] == 5).all()
    assert (per_subject['incongruent'] == 5).all()
    assert (df['rt'] >= 150).all()


def test_response_times_rejects_tiny_designs():
    with pytest.raises(ValueError):
        make_response_times(n_subjects=1)


def test_load_response_times_roundtrip(tmp_path):
    path = tmp_path / 'rt.csv'
    make_response_times(n_subjects=3, n_trials=4, random_state=0).to_csv(path, index=False)
    df = load_response_times(path)
    assert len(df) == 12
    assert df['subject'].iloc[0] == 's01'


def test_load_response_times_drops_bad_rt(tmp_path):
    path = tmp_path / 'rt.csv'
    pd.DataFrame({
        'subject': [1, 1, 2],
        'condition': ['congruent', 'incongruent', 'congruent'],
        'trial': [1, 2, 1],
        'rt': ['400', 'oops', '512.5'],
    }).to_csv(path, index=False)
    df = load_response_times(path)
    assert len(df) == 2
    assert np.allclose(df['rt'], [400.0, 512.5])


def test_load_response_times_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_response_times(tmp_path / 'missing.csv')

    path = tmp_path / 'bad.csv'
    pd.DataFrame({'subject': [1], 'rt': [300]}).to_csv(path, index=False)
    with pytest.raises(ValueError, match='condition'):
        load_response_times(path)


def test_require_columns():
    require_columns(pd.DataFrame({'a': [1]}), ['a'])
    with pytest.raises(ValueError, match="'b'"):
        require_columns(pd.DataFrame({'a': [1]}), ['a', 'b'], name='frame')
