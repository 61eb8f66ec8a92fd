"""Command-line script for cross-validating the form and field classifiers.

Runs grouped k-fold cross-validation, with folds split by website domain so
that forms of one site are never in both the training and the test part of a
fold. Reports:

-   **Form accuracy**: share of forms whose type is predicted correctly.
-   **Field accuracy**: share of individual fields labeled correctly.
-   **Sequence accuracy**: share of forms whose fields are all correct.

Per-form predictions can be written to CSV files for error analysis.
"""
import argparse
import sys
from pathlib import Path

# Add project root to path to allow for package imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from dit.config import load_config
from dit.evaluate import evaluate
from dit.io_utils import load_annotations
from dit.optimize import ConvergenceError


def main():
    """
    Main entry point for the command-line evaluation script.

    Loads the annotations and configuration, runs `evaluate`, prints the
    accuracies with their counts and, when requested, saves the form-level
    disagreements and the per-form field results as CSV.
    """
    parser = argparse.ArgumentParser(
        description="Cross-validate the form-type and field-type models.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("--data", required=True, help="Path to the annotations JSON file.")
    parser.add_argument("--config", default="config.yaml", help="Path to the configuration YAML file.")
    parser.add_argument("--folds", type=int, help="Number of folds. Overrides evaluation.folds in the config.")
    parser.add_argument("--disagreements-out", help="Optional: Path to write misclassified forms as CSV.")
    parser.add_argument("--fields-out", help="Optional: Path to write per-form field results as CSV.")
    parser.add_argument("--verbose", action="store_true", help="Show progress per fold.")
    args = parser.parse_args()

    try:
        cfg = load_config(args.config)
        if args.folds is not None:
            if args.folds < 2:
                raise ValueError(f"--folds must be at least 2, got {args.folds}")
            cfg.folds = args.folds
        if args.verbose:
            cfg.verbose = True

        print("Loading annotations...")
        annotations = load_annotations(args.data)

        result, form_df, field_df = evaluate(annotations, cfg, return_predictions=True)

        print("\n--- Cross-Validation Results ---")
        print(f"Form accuracy:     {result.form_accuracy:.4f} ({result.form_correct}/{result.form_total})")
        print(f"Field accuracy:    {result.field_accuracy:.4f} ({result.field_correct}/{result.field_total})")
        print(f"Sequence accuracy: {result.sequence_accuracy:.4f} ({result.sequence_correct}/{result.sequence_total})")

        if args.disagreements_out and not form_df.empty:
            disagreements = form_df[~form_df["correct"]]
            Path(args.disagreements_out).parent.mkdir(parents=True, exist_ok=True)
            print(f"\nWriting {len(disagreements)} disagreements to {args.disagreements_out}...")
            disagreements.to_csv(args.disagreements_out, index=False)

        if args.fields_out and not field_df.empty:
            Path(args.fields_out).parent.mkdir(parents=True, exist_ok=True)
            print(f"Writing field results for {len(field_df)} forms to {args.fields_out}...")
            field_df.to_csv(args.fields_out, index=False)

    except (FileNotFoundError, ValueError, TypeError, KeyError, ConvergenceError) as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)

if __name__ == "__main__":
    main()
