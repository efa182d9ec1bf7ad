#!/usr/bin/env python
"""
CLI entry point for running a biomarker analysis.
"""
import argparse
import sys
from pathlib import Path

from scbiomarker.pipeline import BiomarkerPipeline


def main():
    parser = argparse.ArgumentParser(
        description="Run scRNA-seq biomarker analysis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run analysis with config file, answering prompts interactively
  python scripts/run_analysis.py --config configs/analysis/melanoma_biomarkers.yaml

  # Batch run: accept every default without prompting
  python scripts/run_analysis.py --config configs/analysis/melanoma_biomarkers.yaml --yes
        """
    )

    parser.add_argument(
        '--config',
        type=str,
        required=True,
        help='Path to analysis configuration YAML file'
    )

    parser.add_argument(
        '--yes',
        action='store_true',
        help='Answer every prompt with its default'
    )

    args = parser.parse_args()

    config_path = Path(args.config)
    if not config_path.exists():
        print(f"Error: Config file not found: {config_path}")
        sys.exit(1)

    print(f"Starting analysis from config: {config_path}")
    pipeline = BiomarkerPipeline(config_path, interactive=False if args.yes else None)
    pipeline.run()

    print(f"\nAnalysis complete! Results saved to: {pipeline.save_dir}")


if __name__ == "__main__":
    main()
