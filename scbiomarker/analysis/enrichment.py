"""
Pathway enrichment of gene lists through the Enrichr service.
"""
import pandas as pd
import gseapy as gp
from typing import Callable, Dict, List, Optional, Sequence


DEFAULT_GENE_SETS = [
    'GO_Biological_Process_2023',
    'KEGG_2021_Human',
    'Reactome_2022',
    'MSigDB_Hallmark_2020',
]

ENRICHMENT_COLUMNS = [
    'Gene_set',
    'Term',
    'Overlap',
    'P-value',
    'Adjusted P-value',
    'Odds Ratio',
    'Combined Score',
    'Genes',
]


def clean_gene_list(genes: Sequence) -> List[str]:
    """Unique, non-empty gene symbols in first-seen order."""
    seen = []
    for gene in genes:
        if gene is None or pd.isna(gene):
            continue
        gene = str(gene).strip()
        if gene and gene not in seen:
            seen.append(gene)
    return seen


def run_enrichment(
    genes: Sequence[str],
    gene_sets: Optional[Sequence[str]] = None,
    organism: str = 'human',
    cutoff: float = 0.05,
    enrichr: Optional[Callable] = None,
    logger=None
) -> pd.DataFrame:
    """
    Query each gene-set library and keep significant terms.

    Parameters
    ----------
    genes : Sequence[str]
        Gene symbols to test
    gene_sets : Optional[Sequence[str]]
        Enrichr library names; defaults to DEFAULT_GENE_SETS
    organism : str
        Enrichr organism
    cutoff : float
        Keep terms with adjusted p-value strictly below this
    enrichr : Optional[Callable]
        Replacement for ``gseapy.enrichr`` with the same signature
    logger : Optional
        Logger instance

    Returns
    -------
    results : pd.DataFrame
        ENRICHMENT_COLUMNS, sorted by adjusted p-value
    """
    gene_list = clean_gene_list(genes)
    gene_sets = list(DEFAULT_GENE_SETS if gene_sets is None else gene_sets)
    if not gene_list or not gene_sets:
        if logger:
            logger.info("No genes or gene sets for enrichment; skipping query")
        return pd.DataFrame(columns=ENRICHMENT_COLUMNS)

    enrichr = enrichr or gp.enrichr

    frames = []
    for gene_set in gene_sets:
        if logger:
            logger.info(f"Querying Enrichr: {len(gene_list)} genes against {gene_set}")
        enr = enrichr(
            gene_list=gene_list,
            gene_sets=gene_set,
            organism=organism,
            outdir=None,
            cutoff=cutoff,
        )
        res = getattr(enr, 'results', None)
        if res is None or res.empty:
            continue
        res = res.copy()
        res['Gene_set'] = gene_set
        frames.append(res)

    if not frames:
        return pd.DataFrame(columns=ENRICHMENT_COLUMNS)

    results = pd.concat(frames, ignore_index=True)
    results = results[results['Adjusted P-value'] < cutoff]
    columns = [c for c in ENRICHMENT_COLUMNS if c in results.columns]
    results = results[columns].sort_values('Adjusted P-value', kind='mergesort')

    if logger:
        logger.info(f"  {len(results)} enriched terms at adjusted p < {cutoff}")
    return results.reset_index(drop=True)


def split_by_direction(de_result: pd.DataFrame) -> Dict[str, List[str]]:
    """Gene lists of a differential-expression result keyed Up / Down."""
    return {
        direction: de_result.index[de_result['direction'] == direction].astype(str).tolist()
        for direction in ('Up', 'Down')
    }


def enrich_comparison(
    de_result: pd.DataFrame,
    gene_sets: Optional[Sequence[str]] = None,
    **kwargs
) -> Dict[str, pd.DataFrame]:
    """Run enrichment separately on the Up and Down genes of a comparison."""
    return {
        direction: run_enrichment(genes, gene_sets=gene_sets, **kwargs)
        for direction, genes in split_by_direction(de_result).items()
    }
