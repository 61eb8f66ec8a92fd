import argparse
import json
import sys
from dataclasses import asdict
from pathlib import Path

# Add project root to path for robust execution
project_root = Path(__file__).parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from dit.classifier import FormFieldClassifier
from dit.config import load_config
from dit.io_utils import load_annotations
from dit.optimize import ConvergenceError


def main():
    """
    Main command-line interface for classifying forms with a trained model.

    This script performs the following steps:
    1.  Loads the configuration file to resolve the default model path.
    2.  Loads the trained form/field classifier.
    3.  Loads the pre-extracted form features from the input JSON file.
    4.  Classifies every form (and its fields), optionally as probabilities.
    5.  Writes one result per form, in input order, as JSON.
    """
    parser = argparse.ArgumentParser(
        description="Classify HTML forms and their fields from pre-extracted features.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("--input", required=True, help="Path to the form features JSON file (a 'forms' list).")
    parser.add_argument("--output", help="Path to write the results JSON. Prints to stdout when omitted.")
    parser.add_argument("--model", help="Path to the trained model JSON. Defaults to paths.model in the config.")
    parser.add_argument("--config", default="config.yaml", help="Path to the configuration YAML file.")
    parser.add_argument("--proba", action="store_true", help="Output probabilities instead of labels.")
    parser.add_argument("--threshold", type=float, default=0.05, help="Minimum probability to report with --proba.")
    args = parser.parse_args()

    try:
        model_path = args.model
        if model_path is None:
            cfg = load_config(args.config)
            if "model" not in cfg.paths:
                raise KeyError(f"No --model given and no 'paths.model' entry in {args.config}")
            model_path = str(Path(args.config).parent / cfg.paths["model"])

        print(f"Loading model from {model_path}...", file=sys.stderr)
        clf = FormFieldClassifier.load(model_path)

        print(f"Loading forms from {args.input}...", file=sys.stderr)
        forms = load_annotations(args.input)

        if args.proba:
            results = [asdict(clf.classify_proba(f, args.threshold)) for f in forms]
        else:
            results = [asdict(clf.classify(f)) for f in forms]

        text = json.dumps(results, ensure_ascii=False, indent=2)
        if args.output:
            output_path = Path(args.output)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_text(text, encoding="utf-8")
            print(f"\nSuccessfully wrote {len(results)} results to {args.output}", file=sys.stderr)
        else:
            print(text)

    except (FileNotFoundError, ValueError, TypeError, KeyError, ConvergenceError) as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)

if __name__ == "__main__":
    main()
