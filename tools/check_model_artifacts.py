"""Simple CI check: ensure each exported model accepts its extractor's feature vector.

Loads the URL and HTML model directories and compares every model's input
width with the number of features its extractor produces.

Exits 0 on success, 1 on a width mismatch, 2 when a model fails to load.

Run: python3 tools/check_model_artifacts.py [--url-model DIR] [--html-model DIR]
"""
import argparse
import sys

from phishsandbox import config
from phishsandbox.errors import ModelLoadError
from phishsandbox.extract_features import HTML_FEATURE_NAMES, URL_FEATURE_NAMES
from phishsandbox.ml_model import load_model_dir


def check(model_dir: str, name: str, expected: int) -> int:
    try:
        model = load_model_dir(model_dir, name=name)
    except ModelLoadError as e:
        print(f'Failed to load {name} model from {model_dir}:', e)
        return 2

    width = model.input_size
    if width != expected:
        print(f'MISMATCH: {name} model takes {width} inputs, extractor produces {expected}')
        return 1
    print(f'OK: {name} model ({len(model.layers)} layers) takes {width} inputs')
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument('--url-model', default=config.URL_MODEL_DIR, help='URL model directory')
    parser.add_argument('--html-model', default=config.HTML_MODEL_DIR, help='HTML model directory')
    args = parser.parse_args(argv)

    codes = [
        check(args.url_model, 'url', len(URL_FEATURE_NAMES)),
        check(args.html_model, 'html', len(HTML_FEATURE_NAMES)),
    ]
    return max(codes)


if __name__ == '__main__':
    sys.exit(main())
