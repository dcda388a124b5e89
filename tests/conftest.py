# tests/conftest.py
import json

import pytest


def dense_layer(units, activation="linear", input_dim=None, use_bias=True, name=None):
    """A Dense entry as the TF.js exporter writes it."""
    config = {
        "name": name or f"dense_{units}",
        "trainable": True,
        "units": units,
        "activation": activation,
        "use_bias": use_bias,
        "kernel_initializer": {"class_name": "VarianceScaling", "config": {}},
        "bias_initializer": {"class_name": "Zeros", "config": {}},
    }
    if input_dim is not None:
        config["batch_input_shape"] = [None, input_dim]
    return {"class_name": "Dense", "config": config}


def dropout_layer(rate=0.2):
    return {"class_name": "Dropout", "config": {"name": "dropout_1", "rate": rate}}


def zero_sigmoid_weights(inputs):
    """Weights for Dense(inputs -> 1, sigmoid) that always score 0.5."""
    return [([inputs, 1], [0.0] * inputs), ([1], [0.0])]


@pytest.fixture
def write_model(tmp_path):
    """Write model.json + weights.json into a fresh directory and return its path."""
    def _write(layers, weights, name="model", double_encode=True):
        model_dir = tmp_path / name
        model_dir.mkdir()
        topology = {
            "class_name": "Sequential",
            "config": {"name": "sequential_1", "layers": layers},
            "keras_version": "tfjs-layers 4.22.0",
            "backend": "tensor_flow.js",
        }
        text = json.dumps(topology)
        if double_encode:
            text = json.dumps(text)
        (model_dir / "model.json").write_text(text, encoding="utf-8")
        entries = [{"shape": shape, "data": data} for shape, data in weights]
        (model_dir / "weights.json").write_text(json.dumps(entries, indent=2), encoding="utf-8")
        return str(model_dir)

    return _write
