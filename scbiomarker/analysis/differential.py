"""
Per-gene two-sample differential expression.

``compare_groups`` takes two genes x cells matrices with the same gene
index, runs one independent location test per gene, applies a single
multiple-comparison correction over all genes and labels every gene
``Up``, ``Down`` or ``Not significant``. Positive statistics mean the
gene is higher in the first group.
"""
import numpy as np
import pandas as pd
import anndata as ad
from scipy import stats
from scipy.sparse import issparse
from statsmodels.stats.multitest import multipletests
from tqdm import tqdm
from typing import Dict, Optional, Sequence, Tuple, Union


TESTS = ('welch', 'student', 'wilcoxon')
ALTERNATIVES = ('two-sided', 'less', 'greater')
DIRECTIONS = ('Up', 'Down', 'Not significant')
# method names accepted by statsmodels multipletests
CORRECTIONS = (
    'bonferroni', 'sidak', 'holm', 'holm-sidak', 'simes-hochberg', 'hommel',
    'fdr_bh', 'fdr_by', 'fdr_tsbh', 'fdr_tsbky', 'fdr_gbs',
)

RESULT_COLUMNS = ['statistic', 'pvalue', 'qvalue', 'direction', 'mean_a', 'mean_b', 'log2fc']


class GeneAlignmentError(ValueError):
    """Compared matrices do not share the same ordered gene rows."""


class GeneTestError(RuntimeError):
    """A single-gene test produced no usable result."""


def check_alignment(a: pd.DataFrame, b: pd.DataFrame) -> None:
    """Raise GeneAlignmentError unless ``a`` and ``b`` have identical gene rows."""
    if a.shape[0] != b.shape[0]:
        raise GeneAlignmentError(
            f"Row count mismatch: {a.shape[0]} genes vs {b.shape[0]} genes"
        )
    if not a.index.equals(b.index):
        differing = [
            (ga, gb) for ga, gb in zip(a.index, b.index) if ga != gb
        ][:5]
        raise GeneAlignmentError(
            f"Gene labels are not aligned; first mismatches (a, b): {differing}"
        )
    if not a.index.is_unique:
        dupes = a.index[a.index.duplicated()].unique().tolist()[:5]
        raise GeneAlignmentError(f"Duplicate gene labels: {dupes}")


def _degenerate_result(diff: float, alternative: str) -> Tuple[float, float]:
    """Statistic and p-value when both groups have zero variance."""
    if diff == 0:
        return 0.0, 1.0
    statistic = np.inf if diff > 0 else -np.inf
    if alternative == 'two-sided':
        return statistic, 0.0
    if alternative == 'greater':
        return statistic, 0.0 if diff > 0 else 1.0
    return statistic, 0.0 if diff < 0 else 1.0


def _test_gene(
    x: np.ndarray,
    y: np.ndarray,
    test: str,
    alternative: str,
    paired: bool
) -> Tuple[float, float]:
    """Run one two-sample test, returning (signed statistic, p-value)."""
    if paired:
        d = x - y
        if np.all(d == d[0]):
            return _degenerate_result(float(d[0]), alternative)
        if test == 'wilcoxon':
            res = stats.wilcoxon(x, y, alternative=alternative)
            # signed-rank sum has no sign; orient it by the median difference
            statistic = float(np.sign(np.median(d)) * res.statistic)
            return statistic, float(res.pvalue)
        res = stats.ttest_rel(x, y, alternative=alternative)
        return float(res.statistic), float(res.pvalue)

    if test == 'wilcoxon':
        if np.all(x == x[0]) and np.all(y == y[0]):
            return _degenerate_result(float(x[0] - y[0]), alternative)
        res = stats.mannwhitneyu(x, y, alternative=alternative)
        # centre U so its sign shows which group ranks higher
        statistic = float(res.statistic) - len(x) * len(y) / 2.0
        return statistic, float(res.pvalue)

    if np.all(x == x[0]) and np.all(y == y[0]):
        return _degenerate_result(float(x[0] - y[0]), alternative)
    res = stats.ttest_ind(x, y, equal_var=(test == 'student'), alternative=alternative)
    return float(res.statistic), float(res.pvalue)


def classify_direction(
    statistic: np.ndarray,
    qvalue: np.ndarray,
    q_threshold: float
) -> np.ndarray:
    """Up/Down by statistic sign among genes with q below the threshold."""
    significant = qvalue < q_threshold
    return np.where(
        significant & (statistic > 0), 'Up',
        np.where(significant & (statistic < 0), 'Down', 'Not significant')
    )


def compare_groups(
    a: pd.DataFrame,
    b: pd.DataFrame,
    test: str = 'welch',
    alternative: str = 'two-sided',
    paired: bool = False,
    correction: str = 'bonferroni',
    q_threshold: float = 0.05,
    log1p_input: bool = False,
    progress: bool = True,
    logger=None
) -> pd.DataFrame:
    """
    Test every gene between two cell groups.

    Parameters
    ----------
    a, b : pd.DataFrame
        Genes x cells matrices with identical gene index
    test : str
        'welch' (unequal variance t-test), 'student' (pooled variance
        t-test) or 'wilcoxon' (Mann-Whitney U, signed-rank when paired)
    alternative : str
        'two-sided', 'less' or 'greater'
    paired : bool
        Pair cells column by column; requires equal cell counts
    correction : str
        Any ``statsmodels.stats.multitest.multipletests`` method
    q_threshold : float
        Significance threshold on q-values for Up/Down labels
    log1p_input : bool
        Values are log1p-transformed; fold changes are then computed on
        ``expm1`` of the data
    progress : bool
        Show a progress bar over genes
    logger : Optional
        Logger instance

    Returns
    -------
    result : pd.DataFrame
        Indexed by gene, columns ``statistic``, ``pvalue``, ``qvalue``,
        ``direction``, ``mean_a``, ``mean_b``, ``log2fc``; sorted by
        ascending q-value
    """
    if test not in TESTS:
        raise ValueError(f"Unknown test '{test}'. Available tests: {list(TESTS)}")
    if alternative not in ALTERNATIVES:
        raise ValueError(f"Unknown alternative '{alternative}'. Use one of {list(ALTERNATIVES)}")
    if correction not in CORRECTIONS:
        raise ValueError(f"Unknown correction '{correction}'. Available methods: {list(CORRECTIONS)}")
    if not 0 < q_threshold <= 1:
        raise ValueError(f"q_threshold must be in (0, 1], got {q_threshold}")

    check_alignment(a, b)

    n_genes = a.shape[0]
    n_a, n_b = a.shape[1], b.shape[1]
    if n_genes == 0:
        raise ValueError("No genes to compare")
    if paired and n_a != n_b:
        raise ValueError(f"Paired comparison needs equal cell counts, got {n_a} and {n_b}")
    min_cells = 1 if test == 'wilcoxon' else 2
    if n_a < min_cells or n_b < min_cells:
        raise ValueError(
            f"'{test}' needs at least {min_cells} cells per group, got {n_a} and {n_b}"
        )

    values_a = a.to_numpy(dtype=float)
    values_b = b.to_numpy(dtype=float)
    if not (np.isfinite(values_a).all() and np.isfinite(values_b).all()):
        raise ValueError("Expression matrices contain non-finite values")

    if logger:
        logger.info(
            f"Testing {n_genes} genes: {n_a} vs {n_b} cells "
            f"({test}, {alternative}, {'paired' if paired else 'unpaired'})"
        )

    statistic = np.empty(n_genes)
    pvalue = np.empty(n_genes)
    genes = tqdm(range(n_genes), desc="DE genes", unit="gene", disable=not progress)
    for i in genes:
        statistic[i], pvalue[i] = _test_gene(values_a[i], values_b[i], test, alternative, paired)
        if np.isnan(statistic[i]) or np.isnan(pvalue[i]):
            raise GeneTestError(f"Test returned NaN for gene '{a.index[i]}'")

    qvalue = multipletests(pvalue, alpha=q_threshold, method=correction)[1]

    linear_a = np.expm1(values_a) if log1p_input else values_a
    linear_b = np.expm1(values_b) if log1p_input else values_b
    mean_a = linear_a.mean(axis=1)
    mean_b = linear_b.mean(axis=1)

    result = pd.DataFrame({
        'statistic': statistic,
        'pvalue': pvalue,
        'qvalue': qvalue,
        'direction': classify_direction(statistic, qvalue, q_threshold),
        'mean_a': mean_a,
        'mean_b': mean_b,
        'log2fc': np.log2(mean_a + 1) - np.log2(mean_b + 1),
    }, index=a.index.copy())
    result.index.name = 'gene'
    result = result.sort_values(['qvalue', 'pvalue'], kind='mergesort')

    if logger:
        counts = summarize(result)
        logger.info(
            f"  Up: {counts['Up']}, Down: {counts['Down']}, "
            f"Not significant: {counts['Not significant']} (q < {q_threshold})"
        )
    return result


def summarize(result: pd.DataFrame) -> Dict[str, int]:
    """Number of genes per direction label."""
    counts = result['direction'].value_counts()
    return {label: int(counts.get(label, 0)) for label in DIRECTIONS}


def _as_list(value) -> list:
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def expression_frame(
    adata: ad.AnnData,
    layer: Optional[str] = None,
    use_raw: bool = False,
    genes: Optional[Sequence[str]] = None
) -> pd.DataFrame:
    """Genes x cells DataFrame from an AnnData layer, raw or X."""
    if use_raw:
        if adata.raw is None:
            raise ValueError("use_raw=True but AnnData has no .raw")
        matrix, var_names = adata.raw.X, adata.raw.var_names
    elif layer is not None:
        if layer not in adata.layers:
            raise ValueError(f"Layer '{layer}' not found. Available layers: {list(adata.layers)}")
        matrix, var_names = adata.layers[layer], adata.var_names
    else:
        matrix, var_names = adata.X, adata.var_names

    dense = matrix.toarray() if issparse(matrix) else np.asarray(matrix)
    frame = pd.DataFrame(dense.T, index=pd.Index(var_names, name='gene'), columns=adata.obs_names)
    if genes is not None:
        missing = [g for g in genes if g not in frame.index]
        if missing:
            raise ValueError(f"Genes not found: {missing[:10]}")
        frame = frame.loc[list(genes)]
    return frame


def compare_cell_groups(
    adata: ad.AnnData,
    group_key: str,
    group_a: Union[str, Sequence[str]],
    group_b: Union[str, Sequence[str]],
    subset: Optional[Dict[str, Union[str, Sequence[str]]]] = None,
    layer: Optional[str] = None,
    use_raw: bool = False,
    genes: Optional[Sequence[str]] = None,
    **kwargs
) -> pd.DataFrame:
    """
    Split cells of ``adata`` into two groups and run ``compare_groups``.

    Parameters
    ----------
    adata : AnnData
        Cells x genes data
    group_key : str
        obs column defining the groups
    group_a, group_b : str or list
        Value(s) of ``group_key`` selecting each group
    subset : Optional[Dict]
        obs column -> value(s) restricting cells before grouping
    layer, use_raw :
        Expression source, see ``expression_frame``
    genes : Optional[Sequence[str]]
        Restrict the test to these genes
    **kwargs
        Passed to ``compare_groups``
    """
    if group_key not in adata.obs.columns:
        raise ValueError(
            f"Group column '{group_key}' not found. Available columns: {list(adata.obs.columns)}"
        )

    mask = np.ones(adata.n_obs, dtype=bool)
    for column, values in (subset or {}).items():
        if column not in adata.obs.columns:
            raise ValueError(f"Subset column '{column}' not found in obs")
        mask &= adata.obs[column].isin(_as_list(values)).to_numpy()

    groups = adata.obs[group_key]
    mask_a = mask & groups.isin(_as_list(group_a)).to_numpy()
    mask_b = mask & groups.isin(_as_list(group_b)).to_numpy()
    if (mask_a & mask_b).any():
        raise ValueError("Groups overlap: a cell belongs to both group_a and group_b")
    if not mask_a.any() or not mask_b.any():
        raise ValueError(
            f"Empty group for {group_key}: {mask_a.sum()} cells in {group_a}, "
            f"{mask_b.sum()} cells in {group_b}"
        )

    frame = expression_frame(adata, layer=layer, use_raw=use_raw, genes=genes)
    return compare_groups(frame.loc[:, mask_a], frame.loc[:, mask_b], **kwargs)
