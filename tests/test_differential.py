"""
Tests for per-gene differential expression.
"""
import pytest
import numpy as np
import pandas as pd
import anndata as ad
from scipy import stats
from statsmodels.stats.multitest import multipletests

from scbiomarker.analysis import differential
from scbiomarker.analysis.differential import (
    compare_groups,
    compare_cell_groups,
    check_alignment,
    classify_direction,
    expression_frame,
    summarize,
    GeneAlignmentError,
    GeneTestError,
    RESULT_COLUMNS,
    CORRECTIONS,
)


@pytest.fixture
def group_matrices():
    """Two genes x cells groups; GENE0-4 shifted up in group A."""
    rng = np.random.default_rng(0)
    genes = [f'GENE{i}' for i in range(20)]
    a = rng.normal(5.0, 1.0, size=(20, 30))
    b = rng.normal(5.0, 1.0, size=(20, 25))
    a[:5] += 4.0
    a[5:8] -= 4.0
    return (
        pd.DataFrame(a, index=genes, columns=[f'a{i}' for i in range(30)]),
        pd.DataFrame(b, index=genes, columns=[f'b{i}' for i in range(25)]),
    )


@pytest.fixture
def mock_adata():
    """Cells x genes AnnData with log-normalized raw and a response column."""
    rng = np.random.default_rng(1)
    n_obs, n_vars = 40, 12
    counts = rng.poisson(3.0, size=(n_obs, n_vars)).astype(np.float32)
    counts[:20, 0] += 20
    adata = ad.AnnData(X=np.log1p(counts))
    adata.obs_names = [f'cell{i}' for i in range(n_obs)]
    adata.var_names = [f'GENE{i}' for i in range(n_vars)]
    adata.obs['response'] = ['responder'] * 20 + ['non_responder'] * 20
    adata.obs['cell_type'] = (['T'] * 10 + ['B'] * 10) * 2
    adata.layers['counts'] = counts
    adata.raw = adata
    return adata


def test_result_has_one_row_per_gene(group_matrices):
    """Every gene appears exactly once with all result columns."""
    a, b = group_matrices
    result = compare_groups(a, b, progress=False)

    assert len(result) == a.shape[0]
    assert set(result.index) == set(a.index)
    assert list(result.columns) == RESULT_COLUMNS
    assert result.index.name == 'gene'


def test_sorted_by_qvalue(group_matrices):
    """Rows come back in ascending q-value order."""
    a, b = group_matrices
    result = compare_groups(a, b, progress=False)
    assert result['qvalue'].is_monotonic_increasing


def test_bonferroni_correction(group_matrices):
    """Default correction multiplies p by the gene count, capped at 1."""
    a, b = group_matrices
    result = compare_groups(a, b, progress=False)

    expected = np.minimum(result['pvalue'] * len(result), 1.0)
    np.testing.assert_allclose(result['qvalue'], expected)
    assert (result['qvalue'] >= result['pvalue']).all()


def test_direction_matches_statistic_sign(group_matrices):
    """Up/Down agree with the statistic sign and the q threshold."""
    a, b = group_matrices
    result = compare_groups(a, b, q_threshold=0.05, progress=False)

    up = result[result['direction'] == 'Up']
    down = result[result['direction'] == 'Down']
    ns = result[result['direction'] == 'Not significant']

    assert (up['statistic'] > 0).all() and (up['qvalue'] < 0.05).all()
    assert (down['statistic'] < 0).all() and (down['qvalue'] < 0.05).all()
    assert ((ns['qvalue'] >= 0.05) | (ns['statistic'] == 0)).all()

    assert {f'GENE{i}' for i in range(5)} <= set(up.index)
    assert {f'GENE{i}' for i in range(5, 8)} <= set(down.index)
    assert (up['log2fc'] > 0).all()


def test_welch_matches_scipy(group_matrices):
    """Per-gene statistic is the unequal-variance t-test."""
    a, b = group_matrices
    result = compare_groups(a, b, progress=False)

    expected = stats.ttest_ind(a.loc['GENE3'], b.loc['GENE3'], equal_var=False)
    assert result.loc['GENE3', 'statistic'] == pytest.approx(expected.statistic)
    assert result.loc['GENE3', 'pvalue'] == pytest.approx(expected.pvalue)


def test_student_matches_scipy(group_matrices):
    """Student test pools the variance."""
    a, b = group_matrices
    result = compare_groups(a, b, test='student', progress=False)

    expected = stats.ttest_ind(a.loc['GENE10'], b.loc['GENE10'], equal_var=True)
    assert result.loc['GENE10', 'pvalue'] == pytest.approx(expected.pvalue)


def test_wilcoxon_statistic_is_centered(group_matrices):
    """Rank-sum statistic is positive when group A ranks higher."""
    a, b = group_matrices
    result = compare_groups(a, b, test='wilcoxon', progress=False)

    assert result.loc['GENE0', 'statistic'] > 0
    assert result.loc['GENE6', 'statistic'] < 0
    expected = stats.mannwhitneyu(a.loc['GENE0'], b.loc['GENE0'])
    assert result.loc['GENE0', 'pvalue'] == pytest.approx(expected.pvalue)


def test_identical_groups_not_significant():
    """A matrix compared with itself gives p of 1 and no calls."""
    rng = np.random.default_rng(2)
    a = pd.DataFrame(rng.normal(size=(10, 8)), index=[f'G{i}' for i in range(10)])
    result = compare_groups(a, a.copy(), progress=False)

    np.testing.assert_allclose(result['pvalue'], 1.0)
    np.testing.assert_allclose(result['statistic'], 0.0, atol=1e-12)
    assert summarize(result) == {'Up': 0, 'Down': 0, 'Not significant': 10}


def test_zero_variance_genes():
    """Constant genes get a defined statistic instead of NaN."""
    genes = ['flat_same', 'flat_higher', 'flat_lower', 'noisy']
    a = pd.DataFrame(
        [[1.0, 1.0, 1.0], [5.0, 5.0, 5.0], [0.0, 0.0, 0.0], [1.0, 2.0, 3.0]],
        index=genes,
    )
    b = pd.DataFrame(
        [[1.0, 1.0, 1.0], [2.0, 2.0, 2.0], [3.0, 3.0, 3.0], [2.0, 3.0, 4.0]],
        index=genes,
    )
    result = compare_groups(a, b, progress=False)

    assert result.loc['flat_same', 'statistic'] == 0
    assert result.loc['flat_same', 'pvalue'] == 1.0
    assert result.loc['flat_higher', 'statistic'] == np.inf
    assert result.loc['flat_higher', 'pvalue'] == 0.0
    assert result.loc['flat_higher', 'direction'] == 'Up'
    assert result.loc['flat_lower', 'statistic'] == -np.inf
    assert result.loc['flat_lower', 'direction'] == 'Down'
    assert result.loc['flat_same', 'direction'] == 'Not significant'


def test_one_sided_alternative():
    """'greater' is significant only when A exceeds B."""
    rng = np.random.default_rng(3)
    a = pd.DataFrame(rng.normal(10, 1, size=(2, 20)), index=['up', 'down'])
    b = pd.DataFrame(rng.normal(10, 1, size=(2, 20)), index=['up', 'down'])
    a.loc['up'] += 5
    a.loc['down'] -= 5

    result = compare_groups(a, b, alternative='greater', progress=False)
    assert result.loc['up', 'pvalue'] < 0.001
    assert result.loc['down', 'pvalue'] > 0.99


def test_row_count_mismatch_raises_before_testing(group_matrices, monkeypatch):
    """Misaligned inputs fail before any gene is tested."""
    a, b = group_matrices

    def fail(*args, **kwargs):
        raise AssertionError("per-gene test should not run")

    monkeypatch.setattr(differential, '_test_gene', fail)
    with pytest.raises(GeneAlignmentError, match="Row count mismatch"):
        compare_groups(a, b.iloc[:-1], progress=False)


def test_label_mismatch_raises_before_testing(group_matrices, monkeypatch):
    """Same shape but different gene order is rejected."""
    a, b = group_matrices

    def fail(*args, **kwargs):
        raise AssertionError("per-gene test should not run")

    monkeypatch.setattr(differential, '_test_gene', fail)
    with pytest.raises(GeneAlignmentError, match="not aligned"):
        compare_groups(a, b.iloc[::-1], progress=False)


def test_alignment_error_is_value_error(group_matrices):
    a, b = group_matrices
    with pytest.raises(ValueError):
        check_alignment(a, b.rename(index={'GENE0': 'OTHER'}))


def test_duplicate_genes_rejected():
    a = pd.DataFrame(np.ones((2, 3)), index=['G', 'G'])
    with pytest.raises(GeneAlignmentError, match="Duplicate"):
        check_alignment(a, a.copy())


def test_nan_result_aborts_comparison(group_matrices, monkeypatch):
    """A failed gene aborts the whole comparison."""
    a, b = group_matrices
    monkeypatch.setattr(differential, '_test_gene', lambda *args: (np.nan, np.nan))

    with pytest.raises(GeneTestError, match="GENE0"):
        compare_groups(a, b, progress=False)


def test_unknown_test_raises(group_matrices):
    a, b = group_matrices
    with pytest.raises(ValueError, match="Unknown test"):
        compare_groups(a, b, test='anova', progress=False)


def test_too_few_cells_for_ttest():
    a = pd.DataFrame([[1.0], [2.0]], index=['G1', 'G2'])
    b = pd.DataFrame([[1.0, 2.0], [2.0, 3.0]], index=['G1', 'G2'])
    with pytest.raises(ValueError, match="at least 2 cells"):
        compare_groups(a, b, progress=False)


def test_paired_requires_equal_counts(group_matrices):
    a, b = group_matrices
    with pytest.raises(ValueError, match="Paired"):
        compare_groups(a, b, paired=True, progress=False)


def test_paired_ttest_matches_scipy(group_matrices):
    """Paired mode pairs columns in order."""
    a, b = group_matrices
    b = b.iloc[:, :20]
    a = a.iloc[:, :20]
    result = compare_groups(a, b, paired=True, progress=False)

    expected = stats.ttest_rel(a.loc['GENE1'], b.loc['GENE1'])
    assert result.loc['GENE1', 'statistic'] == pytest.approx(expected.statistic)
    assert result.loc['GENE1', 'pvalue'] == pytest.approx(expected.pvalue)


def test_classify_direction():
    labels = classify_direction(
        np.array([2.0, -2.0, 2.0, 0.0]),
        np.array([0.01, 0.01, 0.2, 0.01]),
        0.05,
    )
    assert list(labels) == ['Up', 'Down', 'Not significant', 'Not significant']


def test_log1p_input_fold_change():
    """Means are taken on expm1 of log1p data."""
    a = pd.DataFrame([[np.log1p(7.0), np.log1p(7.0)]], index=['G'])
    b = pd.DataFrame([[np.log1p(1.0), np.log1p(1.0)]], index=['G'])
    result = compare_groups(a, b, log1p_input=True, progress=False)

    assert result.loc['G', 'mean_a'] == pytest.approx(7.0)
    assert result.loc['G', 'log2fc'] == pytest.approx(2.0)


def test_expression_frame_orientation(mock_adata):
    """AnnData is turned into a genes x cells frame."""
    frame = expression_frame(mock_adata, layer='counts')
    assert frame.shape == (mock_adata.n_vars, mock_adata.n_obs)
    assert list(frame.index) == list(mock_adata.var_names)
    assert frame.iloc[0, 0] == mock_adata.layers['counts'][0, 0]


def test_expression_frame_missing_layer(mock_adata):
    with pytest.raises(ValueError, match="Layer"):
        expression_frame(mock_adata, layer='spliced')


def test_compare_cell_groups(mock_adata):
    """Groups are selected from obs and the marker gene is called Up."""
    result = compare_cell_groups(
        mock_adata, 'response', 'responder', 'non_responder',
        use_raw=True, log1p_input=True, progress=False,
    )
    assert len(result) == mock_adata.n_vars
    assert result.loc['GENE0', 'direction'] == 'Up'


def test_compare_cell_groups_subset(mock_adata):
    """A subset restricts both groups before testing."""
    result = compare_cell_groups(
        mock_adata, 'response', 'responder', 'non_responder',
        subset={'cell_type': 'T'}, layer='counts', progress=False,
    )
    assert result.loc['GENE0', 'statistic'] > 0


def test_compare_cell_groups_empty_group(mock_adata):
    with pytest.raises(ValueError, match="Empty group"):
        compare_cell_groups(mock_adata, 'response', 'responder', 'unknown', progress=False)


def test_compare_cell_groups_overlap(mock_adata):
    with pytest.raises(ValueError, match="overlap"):
        compare_cell_groups(
            mock_adata, 'response', ['responder', 'non_responder'], 'responder', progress=False
        )


def test_constant_fractional_gene_is_degenerate():
    """Constant non-integer values take the zero-variance path."""
    a = pd.DataFrame([[0.1] * 3, [0.3] * 3], index=['same', 'higher'])
    b = pd.DataFrame([[0.1] * 5, [0.1] * 5], index=['same', 'higher'])
    result = compare_groups(a, b, progress=False)

    assert result.loc['same', 'statistic'] == 0
    assert result.loc['same', 'pvalue'] == 1.0
    assert result.loc['same', 'direction'] == 'Not significant'
    assert result.loc['higher', 'statistic'] == np.inf
    assert result.loc['higher', 'direction'] == 'Up'


def test_fdr_bh_correction(group_matrices):
    """A non-default correction matches statsmodels on the raw p-values."""
    a, b = group_matrices
    result = compare_groups(a, b, correction='fdr_bh', progress=False)

    expected = multipletests(result['pvalue'], method='fdr_bh')[1]
    np.testing.assert_allclose(result['qvalue'], expected)
    bonferroni = compare_groups(a, b, progress=False)
    assert (result['qvalue'] <= bonferroni.loc[result.index, 'qvalue'] + 1e-12).all()


def test_unknown_correction_raises_before_testing(group_matrices, monkeypatch):
    a, b = group_matrices

    def fail(*args, **kwargs):
        raise AssertionError("per-gene test should not run")

    monkeypatch.setattr(differential, '_test_gene', fail)
    with pytest.raises(ValueError, match="Unknown correction"):
        compare_groups(a, b, correction='storey', progress=False)


def test_listed_corrections_accepted(group_matrices):
    a, b = group_matrices
    for correction in CORRECTIONS:
        result = compare_groups(a, b, correction=correction, progress=False)
        assert len(result) == len(a)
        assert np.isfinite(result['qvalue']).all()


def test_paired_wilcoxon_sign(group_matrices):
    """Signed-rank statistic follows the median paired difference."""
    a, b = group_matrices
    a, b = a.iloc[:, :20], b.iloc[:, :20]
    result = compare_groups(a, b, test='wilcoxon', paired=True, progress=False)

    assert result.loc['GENE0', 'statistic'] > 0
    assert result.loc['GENE6', 'statistic'] < 0
    assert result.loc['GENE0', 'direction'] == 'Up'
    assert result.loc['GENE6', 'direction'] == 'Down'

    expected = stats.wilcoxon(a.loc['GENE0'].to_numpy(), b.loc['GENE0'].to_numpy())
    assert result.loc['GENE0', 'pvalue'] == pytest.approx(expected.pvalue)
    assert abs(result.loc['GENE0', 'statistic']) == pytest.approx(expected.statistic)
