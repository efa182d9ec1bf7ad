"""
Multi-sheet spreadsheet output.
"""
import re
import pandas as pd
from pathlib import Path
from typing import Dict, List


MAX_SHEET_NAME = 31
_INVALID_SHEET_CHARS = re.compile(r'[\[\]:*?/\\]')


def sheet_name(name: str, taken: List[str]) -> str:
    """Excel-safe sheet name, unique among ``taken``."""
    base = _INVALID_SHEET_CHARS.sub('_', str(name)).strip("'") or 'Sheet'
    base = base[:MAX_SHEET_NAME]
    candidate, i = base, 1
    while candidate.lower() in (t.lower() for t in taken):
        suffix = f"_{i}"
        candidate = base[:MAX_SHEET_NAME - len(suffix)] + suffix
        i += 1
    return candidate


def write_workbook(sheets: Dict[str, pd.DataFrame], path: Path, index: bool = True) -> Path:
    """
    Write each DataFrame to its own sheet.

    Sheet names are sanitized and truncated to Excel's limit; the
    original names are listed on a leading ``contents`` sheet whenever
    any name had to change.
    """
    if not sheets:
        raise ValueError(f"No tables to write to {path}")

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    taken: List[str] = []
    renamed = {}
    for name in sheets:
        safe = sheet_name(name, taken)
        taken.append(safe)
        renamed[name] = safe

    with pd.ExcelWriter(path, engine='openpyxl') as writer:
        if any(k != v for k, v in renamed.items()):
            contents = pd.DataFrame({'sheet': list(renamed.values()), 'table': list(renamed)})
            contents.to_excel(writer, sheet_name=sheet_name('contents', taken), index=False)
        for name, frame in sheets.items():
            frame.to_excel(writer, sheet_name=renamed[name], index=index)
    return path


def build_biomarker_table(de_results: Dict[str, pd.DataFrame]) -> pd.DataFrame:
    """
    Significant genes across comparisons, one row per gene and comparison.

    Genes called in more comparisons come first, then by q-value.
    """
    rows = []
    for comparison, result in de_results.items():
        significant = result[result['direction'] != 'Not significant']
        for gene, row in significant.iterrows():
            rows.append({
                'gene': gene,
                'comparison': comparison,
                'direction': row['direction'],
                'log2fc': row['log2fc'],
                'qvalue': row['qvalue'],
            })

    columns = ['gene', 'comparison', 'direction', 'log2fc', 'qvalue', 'n_comparisons']
    if not rows:
        return pd.DataFrame(columns=columns)

    table = pd.DataFrame(rows)
    table['n_comparisons'] = table.groupby('gene')['comparison'].transform('nunique')
    table = table.sort_values(
        ['n_comparisons', 'qvalue', 'gene'], ascending=[False, True, True], kind='mergesort'
    )
    return table[columns].reset_index(drop=True)


def direction_overlap(de_results: Dict[str, pd.DataFrame]) -> pd.DataFrame:
    """
    Pairwise counts of genes shared between significant gene sets.

    Each comparison contributes an ``<name> Up`` and an ``<name> Down`` set;
    the diagonal holds the size of each set. Empty sets are left out.
    """
    sets = {}
    for comparison, result in de_results.items():
        for direction in ('Up', 'Down'):
            genes = set(result.index[result['direction'] == direction])
            if genes:
                sets[f"{comparison} {direction}"] = genes

    labels = list(sets)
    counts = [[len(sets[a] & sets[b]) for b in labels] for a in labels]
    return pd.DataFrame(counts, index=labels, columns=labels, dtype=int)
