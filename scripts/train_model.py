"""Command-line script for training the form and field classifiers.

Reads an annotation JSON file with pre-extracted form and field features,
trains the form-type logistic regression model and the field-type CRF, and
writes both to a single model JSON file.
"""
import argparse
import sys
from collections import Counter
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from dit.classifier import train_classifier
from dit.config import load_config
from dit.io_utils import load_annotations
from dit.optimize import ConvergenceError


def main():
    """
    Main entry point for the command-line model training script.

    1.  Loads the configuration (trainer hyperparameters and paths).
    2.  Loads the annotations and reports the label distribution.
    3.  Trains the combined classifier.
    4.  Saves the trained model as JSON.
    """
    parser = argparse.ArgumentParser(
        description="Train the form-type and field-type models from annotated forms.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("--data", help="Path to the annotations JSON file. Defaults to paths.data in the config.")
    parser.add_argument("--output", help="Output path for the model JSON. Defaults to paths.model in the config.")
    parser.add_argument("--config", default="config.yaml", help="Path to the configuration YAML file.")
    parser.add_argument("--verbose", action="store_true", help="Show training progress.")
    args = parser.parse_args()

    try:
        cfg = load_config(args.config)
        if args.verbose:
            cfg.verbose = True
            cfg.form_type.verbose = True
            cfg.field_type.verbose = True

        config_dir = Path(args.config).parent
        data_path = args.data or (str(config_dir / cfg.paths["data"]) if "data" in cfg.paths else None)
        output_path = args.output or (str(config_dir / cfg.paths["model"]) if "model" in cfg.paths else None)
        if data_path is None or output_path is None:
            raise KeyError("Pass --data and --output or set paths.data and paths.model in the config.")

        print(f"Loading annotations from {data_path}...")
        annotations = load_annotations(data_path)
        form_types = Counter(a.form_type for a in annotations if a.form_annotated)
        n_field_forms = sum(1 for a in annotations if a.fields_annotated)
        print(f"Found {len(annotations)} forms, {sum(form_types.values())} with a form type, "
              f"{n_field_forms} with annotated fields.")
        for form_type, count in form_types.most_common():
            print(f"  {form_type}: {count}")

        print("\n--- Training ---")
        clf = train_classifier(annotations, cfg)

        clf.save(output_path)
        print(f"\nSuccessfully wrote model to {output_path}")

    except (FileNotFoundError, ValueError, TypeError, KeyError, ConvergenceError) as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)

if __name__ == "__main__":
    main()
