# layers.py
"""
Layer registry for the numpy inference engine.

Maps a layer kind (the `class_name` written by the Keras / TF.js exporter)
to a builder that binds the layer's weights and returns a callable
computation. Only inference semantics are implemented: Dropout is an
identity, nothing is trainable.

Each builder has the signature

    builder(params, input_shape, cursor, label) -> layer

where `input_shape` excludes the batch dimension (None when unknown) and
`cursor` hands out the layer's WeightEntry objects in consumption order.
"""

from dataclasses import dataclass
from enum import Enum
import math
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from .errors import ModelFormatError, ShapeMismatch, UnknownLayerKind

Shape = Tuple[Optional[int], ...]


class LayerKind(str, Enum):
    INPUT = "InputLayer"
    DENSE = "Dense"
    DROPOUT = "Dropout"
    FLATTEN = "Flatten"
    CONV2D = "Conv2D"
    LSTM = "LSTM"


@dataclass(frozen=True)
class WeightEntry:
    """One learnable tensor: its declared shape and flat float64 values."""
    shape: Tuple[int, ...]
    values: np.ndarray


# ---------------------------------------------------------------------------
# Activations
# ---------------------------------------------------------------------------

def _linear(x: np.ndarray) -> np.ndarray:
    return x


def _relu(x: np.ndarray) -> np.ndarray:
    return np.maximum(x, 0.0)


def _sigmoid(x: np.ndarray) -> np.ndarray:
    # 1 / (1 + e^-x), split by sign so exp never overflows
    x = np.asarray(x, dtype=np.float64)
    out = np.empty_like(x)
    pos = x >= 0
    out[pos] = 1.0 / (1.0 + np.exp(-x[pos]))
    ex = np.exp(x[~pos])
    out[~pos] = ex / (1.0 + ex)
    return out


def _tanh(x: np.ndarray) -> np.ndarray:
    return np.tanh(x)


def _hard_sigmoid(x: np.ndarray) -> np.ndarray:
    return np.clip(0.2 * x + 0.5, 0.0, 1.0)


def _softmax(x: np.ndarray) -> np.ndarray:
    shifted = np.exp(x - np.max(x, axis=-1, keepdims=True))
    return shifted / np.sum(shifted, axis=-1, keepdims=True)


ACTIVATIONS: Dict[str, Callable[[np.ndarray], np.ndarray]] = {
    "linear": _linear,
    "relu": _relu,
    "sigmoid": _sigmoid,
    "tanh": _tanh,
    "hard_sigmoid": _hard_sigmoid,
    "softmax": _softmax,
}


def get_activation(name: Optional[str], label: str = "layer") -> Callable[[np.ndarray], np.ndarray]:
    if name is None:
        return _linear
    # TF.js writes camelCase names for some activations (hardSigmoid)
    key = "hard_sigmoid" if name == "hardSigmoid" else name
    try:
        return ACTIVATIONS[key]
    except (KeyError, TypeError):
        # TypeError: a nested {"class_name": ...} activation object
        raise ModelFormatError(f"{label}: unsupported activation '{name}'") from None


# ---------------------------------------------------------------------------
# Weight consumption
# ---------------------------------------------------------------------------

class WeightCursor:
    """Walks a WeightSet in order, checking each entry against the shape the
    consuming layer expects."""

    def __init__(self, weights: Sequence[WeightEntry]):
        self._weights = tuple(weights)
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._weights) - self._pos

    def peek_shape(self, label: str) -> Tuple[int, ...]:
        if self._pos >= len(self._weights):
            raise ShapeMismatch(f"{label}: weight set exhausted (have {len(self._weights)} entries)")
        return tuple(self._weights[self._pos].shape)

    def take(self, expected: Tuple[int, ...], label: str, what: str) -> np.ndarray:
        if self._pos >= len(self._weights):
            raise ShapeMismatch(
                f"{label}: expected {what} of shape {list(expected)} but the weight set "
                f"has only {len(self._weights)} entries",
                expected=expected,
            )
        entry = self._weights[self._pos]
        if tuple(entry.shape) != tuple(expected):
            raise ShapeMismatch(
                f"{label}: {what} (weight entry {self._pos}) has shape {list(entry.shape)}, "
                f"expected {list(expected)}",
                expected=tuple(expected),
                actual=tuple(entry.shape),
            )
        self._pos += 1
        arr = np.array(entry.values, dtype=np.float64).reshape(expected)
        arr.setflags(write=False)
        return arr


def _require_known(shape: Optional[Shape], label: str, rank: int) -> Tuple[int, ...]:
    if shape is None or len(shape) != rank or any(d is None for d in shape):
        raise ModelFormatError(f"{label}: needs a fully declared input shape of rank {rank}, got {shape}")
    return tuple(int(d) for d in shape)


def _int_param(params: Mapping[str, Any], key: str, label: str) -> int:
    try:
        return int(params[key])
    except (KeyError, TypeError, ValueError):
        raise ModelFormatError(f"{label}: needs an integer '{key}', got {params.get(key)!r}") from None


def _pair(params: Mapping[str, Any], key: str, default: int, label: str) -> Tuple[int, int]:
    value = params.get(key)
    if value is None:
        return default, default
    try:
        if isinstance(value, int):
            return value, value
        first, second = value
        return int(first), int(second)
    except (TypeError, ValueError):
        raise ModelFormatError(f"{label}: '{key}' must be an int or a pair of ints, got {value!r}") from None


# ---------------------------------------------------------------------------
# Layers
# ---------------------------------------------------------------------------

class Identity:
    """InputLayer and Dropout at inference time."""

    def __init__(self, kind: LayerKind, input_shape: Optional[Shape]):
        self.kind = kind
        self.input_shape = input_shape
        self.output_shape = input_shape

    def __call__(self, x: np.ndarray) -> np.ndarray:
        return x


class Flatten:
    kind = LayerKind.FLATTEN

    def __init__(self, input_shape: Optional[Shape]):
        self.input_shape = input_shape
        if input_shape is None or any(d is None for d in input_shape):
            self.output_shape = (None,)
        else:
            self.output_shape = (int(math.prod(input_shape)),)

    def __call__(self, x: np.ndarray) -> np.ndarray:
        return x.reshape(-1)


class Dense:
    kind = LayerKind.DENSE

    def __init__(self, kernel, bias, activation, input_shape: Shape):
        self.kernel = kernel
        self.bias = bias
        self.activation = activation
        self.input_shape = input_shape
        self.output_shape = tuple(input_shape[:-1]) + (kernel.shape[1],)

    def __call__(self, x: np.ndarray) -> np.ndarray:
        y = x @ self.kernel
        if self.bias is not None:
            y = y + self.bias
        return self.activation(y)


class Conv2D:
    """2-D convolution over a channels_last (height, width, channels) input."""

    kind = LayerKind.CONV2D

    def __init__(self, kernel, bias, activation, strides, padding, input_shape, output_shape, pads):
        self.kernel = kernel
        self.bias = bias
        self.activation = activation
        self.strides = strides
        self.padding = padding
        self.input_shape = input_shape
        self.output_shape = output_shape
        self._pads = pads

    def __call__(self, x: np.ndarray) -> np.ndarray:
        kh, kw = self.kernel.shape[:2]
        sh, sw = self.strides
        oh, ow = self.output_shape[:2]
        if self.padding == "same":
            x = np.pad(x, (self._pads[0], self._pads[1], (0, 0)))
        windows = sliding_window_view(x, (kh, kw), axis=(0, 1))[::sh, ::sw][:oh, :ow]
        y = np.einsum("hwcij,ijcf->hwf", windows, self.kernel)
        if self.bias is not None:
            y = y + self.bias
        return self.activation(y)


class LSTM:
    """Single LSTM layer, Keras gate order (input, forget, cell, output)."""

    kind = LayerKind.LSTM

    def __init__(self, kernel, recurrent_kernel, bias, activation, recurrent_activation,
                 return_sequences: bool, go_backwards: bool, input_shape):
        self.kernel = kernel
        self.recurrent_kernel = recurrent_kernel
        self.bias = bias
        self.activation = activation
        self.recurrent_activation = recurrent_activation
        self.return_sequences = return_sequences
        self.go_backwards = go_backwards
        self.units = recurrent_kernel.shape[0]
        self.input_shape = input_shape
        if return_sequences:
            self.output_shape = (input_shape[0], self.units)
        else:
            self.output_shape = (self.units,)

    def __call__(self, x: np.ndarray) -> np.ndarray:
        u = self.units
        steps = x[::-1] if self.go_backwards else x
        h = np.zeros(u, dtype=np.float64)
        c = np.zeros(u, dtype=np.float64)
        outputs = []
        for x_t in steps:
            z = x_t @ self.kernel + h @ self.recurrent_kernel
            if self.bias is not None:
                z = z + self.bias
            i = self.recurrent_activation(z[:u])
            f = self.recurrent_activation(z[u:2 * u])
            g = self.activation(z[2 * u:3 * u])
            o = self.recurrent_activation(z[3 * u:])
            c = f * c + i * g
            h = o * self.activation(c)
            outputs.append(h)
        if self.return_sequences:
            return np.stack(outputs)
        return h


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def _build_input(params: Mapping[str, Any], input_shape, cursor: WeightCursor, label: str):
    return Identity(LayerKind.INPUT, input_shape)


def _build_dropout(params: Mapping[str, Any], input_shape, cursor: WeightCursor, label: str):
    return Identity(LayerKind.DROPOUT, input_shape)


def _build_flatten(params: Mapping[str, Any], input_shape, cursor: WeightCursor, label: str):
    return Flatten(input_shape)


def _build_dense(params: Mapping[str, Any], input_shape, cursor: WeightCursor, label: str):
    units = _int_param(params, "units", label)
    activation = get_activation(params.get("activation"), label)

    if input_shape is None or not input_shape or input_shape[-1] is None:
        # no declared input shape: the kernel decides the input width
        inputs = cursor.peek_shape(label)[0]
        input_shape = tuple(input_shape[:-1]) + (inputs,) if input_shape else (inputs,)
    inputs = int(input_shape[-1])

    kernel = cursor.take((inputs, units), label, "kernel")
    bias = cursor.take((units,), label, "bias") if params.get("use_bias", True) else None
    return Dense(kernel, bias, activation, tuple(input_shape))


def _build_conv2d(params: Mapping[str, Any], input_shape, cursor: WeightCursor, label: str):
    if params.get("data_format", "channels_last") != "channels_last":
        raise ModelFormatError(f"{label}: only channels_last Conv2D is supported")
    if _pair(params, "dilation_rate", 1, label) != (1, 1):
        raise ModelFormatError(f"{label}: dilated Conv2D is not supported")
    height, width, channels = _require_known(input_shape, label, 3)
    filters = _int_param(params, "filters", label)
    kh, kw = _pair(params, "kernel_size", 1, label)
    sh, sw = _pair(params, "strides", 1, label)
    padding = str(params.get("padding", "valid")).lower()
    activation = get_activation(params.get("activation"), label)

    if padding == "same":
        oh, ow = -(-height // sh), -(-width // sw)
        pad_h = max((oh - 1) * sh + kh - height, 0)
        pad_w = max((ow - 1) * sw + kw - width, 0)
        pads = ((pad_h // 2, pad_h - pad_h // 2), (pad_w // 2, pad_w - pad_w // 2))
    elif padding == "valid":
        oh, ow = (height - kh) // sh + 1, (width - kw) // sw + 1
        pads = ((0, 0), (0, 0))
    else:
        raise ModelFormatError(f"{label}: unsupported padding '{padding}'")
    if oh < 1 or ow < 1:
        raise ShapeMismatch(f"{label}: kernel {kh}x{kw} larger than input {height}x{width}")

    kernel = cursor.take((kh, kw, channels, filters), label, "kernel")
    bias = cursor.take((filters,), label, "bias") if params.get("use_bias", True) else None
    return Conv2D(kernel, bias, activation, (sh, sw), padding,
                  (height, width, channels), (oh, ow, filters), pads)


def _build_lstm(params: Mapping[str, Any], input_shape, cursor: WeightCursor, label: str):
    units = _int_param(params, "units", label)
    if input_shape is None or len(input_shape) != 2:
        raise ModelFormatError(f"{label}: LSTM needs a (timesteps, features) input shape, got {input_shape}")
    timesteps, features = input_shape
    if features is None:
        features = cursor.peek_shape(label)[0]
    activation = get_activation(params.get("activation", "tanh"), label)
    recurrent_activation = get_activation(params.get("recurrent_activation", "hard_sigmoid"), label)

    kernel = cursor.take((int(features), 4 * units), label, "kernel")
    recurrent_kernel = cursor.take((units, 4 * units), label, "recurrent kernel")
    bias = cursor.take((4 * units,), label, "bias") if params.get("use_bias", True) else None
    return LSTM(kernel, recurrent_kernel, bias, activation, recurrent_activation,
                bool(params.get("return_sequences", False)),
                bool(params.get("go_backwards", False)),
                (timesteps, int(features)))


LAYER_REGISTRY: Dict[LayerKind, Callable[..., Any]] = {
    LayerKind.INPUT: _build_input,
    LayerKind.DENSE: _build_dense,
    LayerKind.DROPOUT: _build_dropout,
    LayerKind.FLATTEN: _build_flatten,
    LayerKind.CONV2D: _build_conv2d,
    LayerKind.LSTM: _build_lstm,
}


def resolve_kind(name: Any, index: Optional[int] = None) -> LayerKind:
    """Map a serialized class name to a LayerKind; unknown names are a load error."""
    try:
        kind = LayerKind(name)
    except ValueError:
        raise UnknownLayerKind(str(name), index) from None
    if kind not in LAYER_REGISTRY:
        raise UnknownLayerKind(kind.value, index)
    return kind


def build_layer(kind: LayerKind, params: Mapping[str, Any], input_shape, cursor: WeightCursor, label: str):
    return LAYER_REGISTRY[kind](params, input_shape, cursor, label)
