"""
Main pipeline orchestration for the biomarker analysis.
"""
import time
import json
from pathlib import Path
from typing import Dict, Any, Optional
import pandas as pd

from .utils import (
    load_analysis_config,
    setup_logger,
    set_seed,
    get_git_commit,
    get_git_status,
    get_environment_info,
    compute_config_hash,
    public_config,
    save_yaml,
    Prompter,
)
from .data import (
    UnifiedMatrixBuilder,
    QualityControl,
    DataValidator,
    qc_summary,
)
from .analysis import (
    run_harmony,
    cluster_cells,
    label_clusters,
    find_cluster_markers,
    compare_cell_groups,
    enrich_comparison,
    DEFAULT_GENE_SETS,
    compute_metrics,
    compute_per_class_metrics,
    compute_confusion_matrix,
    get_classification_report,
    plot_embedding,
    plot_volcano,
    plot_gene_violin,
    plot_enrichment_bar,
    plot_confusion_matrix,
    plot_feature_importance,
    plot_biomarker_heatmap,
    plot_biomarker_overlap,
)
from .models import get_model, split_train_test
from .export import write_workbook, build_biomarker_table, direction_overlap
from .workspace import Workspace


PROCESSED_KEY = 'processed'
MARKERS_KEY = 'markers'
CLASSIFIER_KEY = 'classifier'


def de_key(name: str) -> str:
    return f"de:{name}"


def enrichment_key(name: str) -> str:
    return f"enrichment:{name}"


class BiomarkerPipeline:
    """Load, merge, correct, cluster, compare, enrich and classify."""

    def __init__(
        self,
        analysis_config_path: Path,
        interactive: Optional[bool] = None,
        check_paths: bool = True
    ):
        """
        Initialize pipeline with analysis configuration.

        Parameters
        ----------
        analysis_config_path : Path
            Path to analysis YAML config
        interactive : Optional[bool]
            Override the config's ``interactive`` flag
        check_paths : bool
            Require data files named in dataset configs to exist
        """
        self.config = load_analysis_config(Path(analysis_config_path), check_paths=check_paths)
        self.analysis_name = self.config['name']

        output_config = self.config.get('output', {})
        self.base_dir = Path(output_config.get('save_dir', 'results')) / self.analysis_name
        timestamp = time.strftime('%b%d-%H-%M')
        self.save_dir = self.base_dir / timestamp
        self.save_dir.mkdir(parents=True, exist_ok=True)

        self.logger = setup_logger('pipeline', self.save_dir)
        self.logger.section("scRNA-seq Biomarker Analysis Pipeline")
        self.logger.info(f"Analysis: {self.analysis_name}")
        self.logger.info(f"Output directory: {self.save_dir}")

        config_snapshot_path = self.save_dir / "config.yaml"
        save_yaml(public_config(self.config), config_snapshot_path)
        self.logger.info(f"Configuration saved to {config_snapshot_path}")

        self._log_reproducibility_info()

        if interactive is None:
            interactive = self.config.get('interactive', True)
        self.prompter = Prompter(interactive=interactive, logger=self.logger)
        self.defaults = {
            'save_tables': True,
            'save_plots': True,
            'save_workspace': True,
            **self.config.get('defaults', {}),
        }

        workspace_path = Path(output_config.get('workspace', self.base_dir / "workspace.pkl"))
        self.workspace = Workspace(workspace_path, self.logger)
        self.workspace.load()

        self.adata = None
        self.de_results: Dict[str, pd.DataFrame] = {}
        self.enrichment_results: Dict[str, pd.DataFrame] = {}
        self.classifier_results: Dict[str, Any] = {}

    def _log_reproducibility_info(self):
        """Log git state, library versions and config hash."""
        repro_config = self.config.get('reproducibility', {})

        git_commit = repro_config.get('git_commit', 'auto')
        if git_commit == 'auto':
            git_commit = get_git_commit()

        git_status = get_git_status()

        if git_commit:
            self.logger.info(f"Git commit: {git_commit}")
            if git_status == 'dirty':
                self.logger.warning("Git repository has uncommitted changes")

        env_info = get_environment_info()
        self.logger.info(f"Python version: {env_info['python_version']}")
        for package, version in env_info['packages'].items():
            self.logger.debug(f"  {package}: {version}")

        config_hash = compute_config_hash(public_config(self.config))
        self.logger.info(f"Config hash: {config_hash}")

        repro_info = {
            'git_commit': git_commit,
            'git_status': git_status,
            'config_hash': config_hash,
            'environment': env_info,
        }

        with open(self.save_dir / "reproducibility.json", 'w') as f:
            json.dump(repro_info, f, indent=2)

    def load_data(self):
        """Load every dataset and build the unified matrix."""
        self.logger.section("STEP 1: Loading and Merging Datasets")

        builder = UnifiedMatrixBuilder(
            self.config['_dataset_configs'],
            self.workspace,
            join=self.config.get('merge', {}).get('join', 'outer'),
            logger=self.logger,
        )
        combined = builder.build()

        DataValidator.validate_adata(combined, "Unified matrix")
        DataValidator.validate_counts(combined, "Unified matrix")
        DataValidator.check_data_quality(combined, "Unified matrix", self.logger)
        return combined

    def quality_control(self, combined):
        """Filter, normalize and reduce the unified matrix."""
        self.logger.section("STEP 2: Quality Control")

        if PROCESSED_KEY in self.workspace:
            self.logger.info("Using cached QC-processed matrix")
            self.adata = self.workspace[PROCESSED_KEY]
            return

        self.adata = QualityControl(self.config.get('qc', {}), self.logger).run(combined)
        self.workspace[PROCESSED_KEY] = self.adata
        self.logger.info(f"QC summary by source:\n{qc_summary(self.adata).to_string()}")

    def batch_correct(self):
        """Harmony integration keyed by source dataset."""
        self.logger.section("STEP 3: Batch Correction")
        integration = dict(self.config.get('integration', {}))
        adjusted_basis = integration.pop('adjusted_basis', 'X_pca_harmony')

        if adjusted_basis in self.adata.obsm:
            self.logger.info(f"Using cached {adjusted_basis}")
            return

        run_harmony(
            self.adata,
            batch_key=integration.pop('batch_key', 'source'),
            basis=integration.pop('basis', 'X_pca'),
            adjusted_basis=adjusted_basis,
            logger=self.logger,
            **integration,
        )

    def cluster(self):
        """Neighbour graph, UMAP and Leiden clusters, then optional relabelling."""
        self.logger.section("STEP 4: Clustering")
        clustering = self.config.get('clustering', {})
        key = clustering.get('key_added', 'cluster')

        if key in self.adata.obs.columns:
            self.logger.info(f"Using cached clusters in '{key}'")
        else:
            cluster_cells(
                self.adata,
                use_rep=clustering.get('use_rep', self.config.get('integration', {}).get('adjusted_basis', 'X_pca_harmony')),
                n_neighbors=clustering.get('n_neighbors', 15),
                n_pcs=clustering.get('n_pcs'),
                resolution=clustering.get('resolution', 0.8),
                key_added=key,
                random_state=clustering.get('random_state', 0),
                logger=self.logger,
            )

        mapping = self.config.get('cluster_labels') or {}
        if mapping and 'cell_type' not in self.adata.obs.columns:
            label_clusters(self.adata, mapping, key=key, label_key='cell_type', logger=self.logger)
        elif not mapping:
            self.logger.info("No cluster labels configured; keeping cluster ids")

    def find_markers(self):
        """Per-cluster marker genes."""
        self.logger.section("STEP 5: Cluster Markers")
        if MARKERS_KEY in self.workspace:
            self.logger.info("Using cached cluster markers")
            return self.workspace[MARKERS_KEY]

        marker_config = self.config.get('markers', {})
        markers = find_cluster_markers(
            self.adata,
            groupby=marker_config.get('groupby', self.config.get('clustering', {}).get('key_added', 'cluster')),
            method=marker_config.get('method', 'wilcoxon'),
            n_genes=marker_config.get('n_genes', 100),
        )
        self.workspace[MARKERS_KEY] = markers
        self.logger.info(f"Ranked {len(markers)} marker entries")
        return markers

    def differential_expression(self):
        """Run every configured comparison."""
        self.logger.section("STEP 6: Differential Expression")
        de_config = self.config.get('de', {})

        for comparison in self.config.get('comparisons', []):
            name = comparison['name']
            self.logger.subsection(f"Comparison: {name}")

            if de_key(name) in self.workspace:
                self.logger.info("Using cached result")
                self.de_results[name] = self.workspace[de_key(name)]
                continue

            layer = comparison.get('layer')
            use_raw = comparison.get('use_raw', layer is None and self.adata.raw is not None)
            result = compare_cell_groups(
                self.adata,
                group_key=comparison['group_key'],
                group_a=comparison['group_a'],
                group_b=comparison['group_b'],
                subset=comparison.get('subset'),
                layer=layer,
                use_raw=use_raw,
                test=comparison.get('test', de_config.get('test', 'welch')),
                alternative=comparison.get('alternative', de_config.get('alternative', 'two-sided')),
                correction=comparison.get('correction', de_config.get('correction', 'bonferroni')),
                q_threshold=comparison.get('q_threshold', de_config.get('q_threshold', 0.05)),
                log1p_input=comparison.get('log1p_input', use_raw),
                progress=de_config.get('progress', True),
                logger=self.logger,
            )
            self.workspace[de_key(name)] = result
            self.de_results[name] = result

    def enrichment(self):
        """Enrichr queries on the Up and Down genes of each comparison."""
        self.logger.section("STEP 7: Pathway Enrichment")
        enrichment_config = self.config.get('enrichment', {})
        if not enrichment_config.get('enabled', True):
            self.logger.info("Enrichment disabled")
            return

        available = enrichment_config.get('gene_sets', DEFAULT_GENE_SETS)
        gene_sets = self.prompter.select_many(
            "Which enrichment databases should be queried?", available
        )

        for name, result in self.de_results.items():
            key = enrichment_key(name)
            if key in self.workspace:
                self.logger.info(f"Using cached enrichment for {name}")
                self.enrichment_results[name] = self.workspace[key]
                continue

            by_direction = enrich_comparison(
                result,
                gene_sets=gene_sets,
                organism=enrichment_config.get('organism', 'human'),
                cutoff=enrichment_config.get('cutoff', 0.05),
                logger=self.logger,
            )
            combined = pd.concat(
                [enriched.assign(direction=direction) for direction, enriched in by_direction.items()],
                ignore_index=True,
            )
            self.workspace[key] = combined
            self.enrichment_results[name] = combined

    def train_classifier(self):
        """Random Forest cell-type classifier on a held-out split."""
        self.logger.section("STEP 8: Cell-Type Classifier")
        classifier_config = self.config.get('classifier')
        if not classifier_config:
            self.logger.info("No classifier configured")
            return

        if CLASSIFIER_KEY in self.workspace:
            self.logger.info("Using cached classifier results")
            self.classifier_results = self.workspace[CLASSIFIER_KEY]
            return

        candidates = [
            c for c in ('cell_type', 'cluster', 'malignant', 'response', 'source')
            if c in self.adata.obs.columns and self.adata.obs[c].notna().any()
        ]
        label_key = self.prompter.select_one(
            "Which obs column holds the classifier labels?",
            candidates,
            default=classifier_config.get('label_key', candidates[0] if candidates else None),
        )
        model_config = {**classifier_config, 'label_key': label_key}

        seed = self.config.get('reproducibility', {}).get('seed', 0)
        set_seed(seed)
        self.logger.info(f"Random seed: {seed}")

        train, test = split_train_test(
            self.adata,
            label_key=label_key,
            test_size=classifier_config.get('test_size', 0.3),
            seed=seed,
            logger=self.logger,
        )

        model = get_model(classifier_config['model'], model_config, self.save_dir, self.logger)
        model.train(train)
        model.save_model()

        y_true = test.obs[label_key].astype(str).to_numpy()
        y_pred = model.predict(test)
        labels = sorted(set(y_true) | set(y_pred))

        metrics = compute_metrics(y_true, y_pred)
        self.logger.info(f"Results on {metrics['n_samples']} held-out cells:")
        self.logger.info(f"  Accuracy: {metrics['accuracy']:.4f}")
        self.logger.info(f"  F1 (macro): {metrics['f1_macro']:.4f}")
        self.logger.info("\n" + get_classification_report(y_true, y_pred))

        self.classifier_results = {
            'label_key': label_key,
            'metrics': metrics,
            'per_class': compute_per_class_metrics(y_true, y_pred, labels),
            'confusion_matrix': compute_confusion_matrix(y_true, y_pred, labels),
            'feature_importance': model.feature_importance(),
            'predictions': pd.DataFrame(
                {'true_label': y_true, 'predicted_label': y_pred}, index=test.obs_names
            ),
        }
        self.workspace[CLASSIFIER_KEY] = self.classifier_results

    def export_tables(self):
        """Write DE, marker, enrichment, biomarker and classifier workbooks."""
        self.logger.section("STEP 9: Exporting Tables")
        if not self.prompter.confirm("Save result tables?", default=self.defaults['save_tables']):
            return

        if self.de_results:
            path = write_workbook(self.de_results, self.save_dir / "differential_expression.xlsx")
            self.logger.info(f"DE tables saved to {path}")

            biomarkers = build_biomarker_table(self.de_results)
            sheets = {'biomarkers': biomarkers}
            overlap = direction_overlap(self.de_results)
            if not overlap.empty:
                sheets['overlap'] = overlap.rename_axis('gene_set').reset_index()
            if MARKERS_KEY in self.workspace:
                sheets['cluster_markers'] = self.workspace[MARKERS_KEY]
            path = write_workbook(sheets, self.save_dir / "biomarkers.xlsx", index=False)
            self.logger.info(f"Biomarker tables saved to {path}")

        if self.enrichment_results:
            path = write_workbook(self.enrichment_results, self.save_dir / "enrichment.xlsx", index=False)
            self.logger.info(f"Enrichment tables saved to {path}")

        if self.classifier_results:
            sheets = {
                'metrics': pd.DataFrame([self.classifier_results['metrics']]),
                'per_class': self.classifier_results['per_class'],
                'confusion_matrix': self.classifier_results['confusion_matrix'],
                'feature_importance': self.classifier_results['feature_importance'],
                'predictions': self.classifier_results['predictions'],
            }
            path = write_workbook(sheets, self.save_dir / "classifier.xlsx")
            self.logger.info(f"Classifier tables saved to {path}")

    def export_plots(self):
        """Embeddings, DE, biomarker, enrichment and classifier plots."""
        self.logger.section("STEP 10: Plotting")
        if not self.prompter.confirm("Save plots?", default=self.defaults['save_plots']):
            return

        plot_dir = self.save_dir / "plots"
        for color in ('source', 'cluster', 'cell_type', 'response', 'malignant'):
            if color in self.adata.obs.columns and self.adata.obs[color].notna().any():
                plot_embedding(self.adata, color, plot_dir / f"umap_{color}.png")
        if 'X_pca' in self.adata.obsm:
            plot_embedding(self.adata, 'source', plot_dir / "pca_source.png", basis='pca', title="PCA")

        for name, result in self.de_results.items():
            plot_volcano(result, plot_dir / f"volcano_{name}.png", title=name)
        plot_biomarker_overlap(direction_overlap(self.de_results), plot_dir / "biomarker_overlap.png")

        plot_settings = self.config.get('plots', {})
        biomarkers = build_biomarker_table(self.de_results)
        if not biomarkers.empty:
            top = biomarkers['gene'].drop_duplicates().tolist()
            n_default = plot_settings.get('violin_genes', 6)
            genes = self.prompter.select_many(
                "Which genes should be plotted?", top[:50], default=top[:n_default]
            )
            groupby = 'cell_type' if 'cell_type' in self.adata.obs.columns else 'cluster'
            if self.adata.obs[groupby].isna().all():
                groupby = 'cluster'
            if genes:
                plot_gene_violin(self.adata, genes, groupby, plot_dir / "violin_biomarkers.png")
            plot_biomarker_heatmap(
                self.adata,
                top[:plot_settings.get('heatmap_genes', 30)],
                groupby,
                plot_dir / "heatmap_biomarkers.png",
            )

        for name, enriched in self.enrichment_results.items():
            plot_enrichment_bar(enriched, plot_dir / f"enrichment_{name}.png", title=name)

        if self.classifier_results:
            plot_confusion_matrix(
                self.classifier_results['confusion_matrix'],
                plot_dir / "classifier_confusion_matrix.png",
                title=f"Random Forest: {self.classifier_results['label_key']}",
            )
            plot_feature_importance(
                self.classifier_results['feature_importance'],
                plot_dir / "classifier_feature_importance.png",
            )
        self.logger.info(f"Plots saved to {plot_dir}")

    def save_workspace(self):
        """Persist the workspace cache if confirmed."""
        if self.prompter.confirm(
            f"Save workspace to {self.workspace.path}?", default=self.defaults['save_workspace']
        ):
            self.workspace.save()

    def run(self):
        """Run the complete pipeline."""
        start_time = time.time()

        try:
            combined = self.load_data()
            self.quality_control(combined)
            self.batch_correct()
            self.cluster()
            self.find_markers()
            self.differential_expression()
            self.enrichment()
            self.train_classifier()
            self.export_tables()
            self.export_plots()
            self.save_workspace()

            elapsed = time.time() - start_time
            self.logger.section("PIPELINE COMPLETE")
            self.logger.info(f"Total time: {elapsed:.2f} seconds")

            return {
                'differential_expression': self.de_results,
                'enrichment': self.enrichment_results,
                'classifier': self.classifier_results,
            }

        except Exception as e:
            self.logger.error(f"Pipeline failed: {str(e)}")
            raise
