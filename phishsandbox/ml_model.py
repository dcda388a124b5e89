# ml_model.py
"""
Load the exported phishing classifier and return phishing probability.

The trainer writes two artifacts per model directory:

    model.json    Keras / TF.js topology (ordered layers, class_name + config)
    weights.json  list of {"shape": [...], "data": [...]} in layer order

Both are turned into a LoadedModel: an ordered tuple of numpy layer
computations with their weights bound. Loading never guesses: an unknown
layer kind, a weight shape that disagrees with the architecture or a
missing file aborts the load.

Models are built lazily, once per process, through ModelSlot.
"""

from concurrent.futures import Future
from dataclasses import dataclass
import json
import logging
import math
import os
import threading
from types import MappingProxyType
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from . import config
from .errors import (
    InferenceError,
    ModelArtifactMissing,
    ModelFormatError,
    ModelLoadError,
    ShapeMismatch,
)
from .layers import LayerKind, WeightCursor, WeightEntry, build_layer, resolve_kind

logger = logging.getLogger("ml_model")

# Keys under which the first layer may declare its input shape. The batch_*
# variants carry a leading batch dimension.
BATCH_SHAPE_KEYS = ("batch_input_shape", "batch_shape")


@dataclass(frozen=True)
class LayerSpec:
    kind: LayerKind
    params: Mapping[str, Any]


ModelDescriptor = Tuple[LayerSpec, ...]
WeightSet = Tuple[WeightEntry, ...]


@dataclass(frozen=True)
class LoadedModel:
    name: str
    layers: Tuple[Any, ...]
    input_shape: Tuple[Optional[int], ...]
    output_shape: Tuple[Optional[int], ...]

    @property
    def input_size(self) -> Optional[int]:
        if any(d is None for d in self.input_shape):
            return None
        return int(math.prod(self.input_shape))


# ---------------------------------------------------------------------------
# Artifact parsing
# ---------------------------------------------------------------------------

def _decode_json(raw: str, source: str) -> Any:
    try:
        doc = json.loads(raw)
        # TF.js model.toJSON() already returns a string; the trainer
        # stringifies it a second time.
        if isinstance(doc, str):
            doc = json.loads(doc)
    except ValueError as e:
        raise ModelFormatError(f"{source}: invalid JSON ({e})") from e
    return doc


def _layer_list(document: Any) -> List[Any]:
    for wrapper in ("modelTopology", "model_config"):
        if isinstance(document, dict) and wrapper in document:
            document = document[wrapper]
    if isinstance(document, list):
        return document
    cfg = document.get("config") if isinstance(document, dict) else None
    if isinstance(cfg, list):
        return cfg
    if isinstance(cfg, dict) and isinstance(cfg.get("layers"), list):
        return cfg["layers"]
    raise ModelFormatError("architecture document has no layer list")


def parse_descriptor(document: Any) -> ModelDescriptor:
    """Turn a decoded architecture document into an ordered LayerSpec tuple."""
    specs = []
    for index, layer in enumerate(_layer_list(document)):
        if not isinstance(layer, dict) or "class_name" not in layer:
            raise ModelFormatError(f"layer {index}: missing class_name")
        kind = resolve_kind(layer["class_name"], index)
        params = layer.get("config") or {}
        if not isinstance(params, dict):
            raise ModelFormatError(f"layer {index}: config must be an object")
        specs.append(LayerSpec(kind, MappingProxyType(dict(params))))
    if not specs:
        raise ModelFormatError("architecture declares no layers")
    return tuple(specs)


def parse_weights(document: Any) -> WeightSet:
    """Turn a decoded weight document into an ordered WeightEntry tuple."""
    if not isinstance(document, list):
        raise ModelFormatError("weight file must hold a list of {shape, data} entries")
    entries = []
    for index, item in enumerate(document):
        if not isinstance(item, dict) or "shape" not in item:
            raise ModelFormatError(f"weight entry {index}: missing shape")
        values = item.get("data", item.get("values"))
        if values is None:
            raise ModelFormatError(f"weight entry {index}: missing data")
        try:
            shape = tuple(int(d) for d in item["shape"])
            flat = np.asarray(values, dtype=np.float64).reshape(-1)
        except (TypeError, ValueError) as e:
            raise ModelFormatError(f"weight entry {index}: {e}") from e
        expected = int(math.prod(shape))
        if flat.size != expected:
            raise ShapeMismatch(
                f"weight entry {index}: shape {list(shape)} needs {expected} values, got {flat.size}",
                expected=expected,
                actual=int(flat.size),
            )
        flat.setflags(write=False)
        entries.append(WeightEntry(shape, flat))
    return tuple(entries)


def _read_json(path: str) -> Any:
    if not os.path.isfile(path):
        raise ModelArtifactMissing(path)
    try:
        with open(path, "r", encoding="utf-8") as fh:
            raw = fh.read()
    except OSError as e:
        raise ModelLoadError(f"Cannot read {path}: {e}") from e
    return _decode_json(raw, path)


def load_artifacts(model_dir: str) -> Tuple[ModelDescriptor, WeightSet]:
    """Read model.json + weights.json from `model_dir`."""
    arch_path = os.path.join(model_dir, config.ARCHITECTURE_FILE)
    weights_path = os.path.join(model_dir, config.WEIGHTS_FILE)
    # check both before parsing either, so a half-copied directory reports
    # the missing file rather than a format error
    for path in (arch_path, weights_path):
        if not os.path.isfile(path):
            raise ModelArtifactMissing(path)
    return parse_descriptor(_read_json(arch_path)), parse_weights(_read_json(weights_path))


# ---------------------------------------------------------------------------
# Load + forward pass
# ---------------------------------------------------------------------------

def _shape_from(value: Any, skip: int, source: str) -> Tuple[Optional[int], ...]:
    try:
        return tuple(None if d is None else int(d) for d in list(value)[skip:])
    except (TypeError, ValueError):
        raise ModelFormatError(f"'{source}' must be a list of integers or nulls, got {value!r}") from None


def _declared_input_shape(params: Mapping[str, Any]) -> Optional[Tuple[Optional[int], ...]]:
    for key in BATCH_SHAPE_KEYS:
        if params.get(key) is not None:
            return _shape_from(params[key], 1, key)
    if params.get("input_shape") is not None:
        return _shape_from(params["input_shape"], 0, "input_shape")
    return None


def load(descriptor: Sequence[LayerSpec], weights: Sequence[WeightEntry], name: str = "model") -> LoadedModel:
    """Bind `weights` to the layers of `descriptor`, in order."""
    if not descriptor:
        raise ModelFormatError(f"{name}: architecture declares no layers")
    cursor = WeightCursor(weights)
    shape = _declared_input_shape(descriptor[0].params)
    layers = []
    for index, spec in enumerate(descriptor):
        kind = resolve_kind(spec.kind, index)
        label = f"{name} layer {index} ({kind.value} '{spec.params.get('name', '?')}')"
        layer = build_layer(kind, spec.params, shape, cursor, label)
        layers.append(layer)
        shape = layer.output_shape
    if cursor.remaining:
        raise ShapeMismatch(f"{name}: {cursor.remaining} weight entries left over after the last layer")

    input_shape = next((layer.input_shape for layer in layers if layer.input_shape is not None), None)
    if input_shape is None:
        raise ModelFormatError(f"{name}: input shape could not be determined")
    return LoadedModel(name, tuple(layers), tuple(input_shape), tuple(shape or ()))


def load_model_dir(model_dir: str, name: str = "model") -> LoadedModel:
    descriptor, weights = load_artifacts(model_dir)
    return load(descriptor, weights, name=name)


def infer(model: LoadedModel, features: Sequence[float]) -> float:
    """Forward pass for a single input vector; returns the score in [0, 1]."""
    try:
        x = np.asarray(features, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InferenceError(f"{model.name}: features are not numeric ({e})") from e
    if x.size == 0:
        raise InferenceError(f"{model.name}: empty feature vector")

    target = tuple(-1 if d is None else d for d in model.input_shape)
    if target.count(-1) > 1:
        raise InferenceError(f"{model.name}: ambiguous input shape {list(model.input_shape)}")
    try:
        x = x.reshape(target)
    except ValueError:
        raise InferenceError(
            f"{model.name}: expected input shape {list(model.input_shape)}, got {x.size} values"
        ) from None

    for layer in model.layers:
        x = layer(x)

    out = np.asarray(x).reshape(-1)
    if out.size != 1:
        raise InferenceError(f"{model.name}: expected a single output unit, got {out.size}")
    score = float(out[0])
    if not math.isfinite(score) or not 0.0 <= score <= 1.0:
        raise InferenceError(f"{model.name}: output {score} is not a probability")
    return score


# ---------------------------------------------------------------------------
# Lazy, shared models
# ---------------------------------------------------------------------------

class ModelSlot:
    """Holds one LoadedModel for the process lifetime.

    The first get() builds the model; callers arriving while that build is
    running wait on the same Future and see the same outcome. A failed build
    leaves the slot empty so the next get() tries again.
    """

    def __init__(self, name: str, model_dir: str, loader: Optional[Callable[[], LoadedModel]] = None):
        self.name = name
        self.model_dir = model_dir
        self._loader = loader
        self._lock = threading.Lock()
        self._model: Optional[LoadedModel] = None
        self._inflight: Optional[Future] = None

    @property
    def ready(self) -> bool:
        return self._model is not None

    def _load(self) -> LoadedModel:
        if self._loader is not None:
            return self._loader()
        logger.info("Loading %s model from %s", self.name, self.model_dir)
        return load_model_dir(self.model_dir, name=self.name)

    def get(self) -> LoadedModel:
        model = self._model
        if model is not None:
            return model

        with self._lock:
            if self._model is not None:
                return self._model
            future = self._inflight
            leader = future is None
            if leader:
                future = self._inflight = Future()

        if not leader:
            return future.result()

        try:
            model = self._load()
        except BaseException as e:
            logger.error("Loading %s model failed: %s", self.name, e)
            with self._lock:
                self._inflight = None
            future.set_exception(e)
            raise

        with self._lock:
            self._model = model
            self._inflight = None
        future.set_result(model)
        logger.info("%s model ready: %d layers, input shape %s",
                    self.name, len(model.layers), list(model.input_shape))
        return model


URL_MODEL = ModelSlot("url", config.URL_MODEL_DIR)
HTML_MODEL = ModelSlot("html", config.HTML_MODEL_DIR)


def predict_phishing_prob(features: Sequence[float], slot: ModelSlot = URL_MODEL) -> float:
    """
    Predict probability (0 to 1) that the page behind `features` is phishing,
    using the model held by `slot` (loaded on first use).
    """
    return infer(slot.get(), features)
