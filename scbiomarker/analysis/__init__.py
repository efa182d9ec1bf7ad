"""
Integration, clustering, differential expression, enrichment and plotting.
"""
from .differential import (
    compare_groups,
    compare_cell_groups,
    expression_frame,
    check_alignment,
    classify_direction,
    summarize,
    GeneAlignmentError,
    GeneTestError,
)
from .integration import run_harmony
from .clustering import cluster_cells, label_clusters, find_cluster_markers
from .enrichment import run_enrichment, enrich_comparison, split_by_direction, DEFAULT_GENE_SETS
from .metrics import (
    compute_metrics,
    compute_per_class_metrics,
    compute_confusion_matrix,
    get_classification_report,
)
from .visualization import (
    plot_embedding,
    plot_volcano,
    plot_gene_violin,
    plot_enrichment_bar,
    plot_confusion_matrix,
    plot_feature_importance,
    plot_biomarker_heatmap,
    plot_biomarker_overlap,
)

__all__ = [
    'compare_groups',
    'compare_cell_groups',
    'expression_frame',
    'check_alignment',
    'classify_direction',
    'summarize',
    'GeneAlignmentError',
    'GeneTestError',
    'run_harmony',
    'cluster_cells',
    'label_clusters',
    'find_cluster_markers',
    'run_enrichment',
    'enrich_comparison',
    'split_by_direction',
    'DEFAULT_GENE_SETS',
    'compute_metrics',
    'compute_per_class_metrics',
    'compute_confusion_matrix',
    'get_classification_report',
    'plot_embedding',
    'plot_volcano',
    'plot_gene_violin',
    'plot_enrichment_bar',
    'plot_confusion_matrix',
    'plot_feature_importance',
    'plot_biomarker_heatmap',
    'plot_biomarker_overlap',
]
