# errors.py
"""
Exception types raised by the model loader, the inference path and the
content fetcher.
"""

from typing import Optional


class PhishSandboxError(Exception):
    """Base class for every error raised by phishsandbox."""


class ModelLoadError(PhishSandboxError):
    """Model artifacts could not be turned into a LoadedModel."""


class ModelArtifactMissing(ModelLoadError):
    def __init__(self, path: str):
        super().__init__(f"Model artifact not found: {path}")
        self.path = path


class ModelFormatError(ModelLoadError):
    """Artifact exists but is not a usable architecture/weight document."""


class UnknownLayerKind(ModelLoadError):
    def __init__(self, kind: str, index: Optional[int] = None):
        where = f" at layer {index}" if index is not None else ""
        super().__init__(f"Unknown layer type{where}: {kind}")
        self.kind = kind
        self.index = index


class ShapeMismatch(ModelLoadError):
    def __init__(self, message: str, expected=None, actual=None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class InferenceError(PhishSandboxError):
    """Forward pass could not produce a score."""


class FetchError(PhishSandboxError):
    """Fetching the rendered page failed.

    Carries the target url, the proximate cause and the fetcher state the
    failure happened in.
    """

    def __init__(self, url: str, cause: Optional[BaseException] = None, state: Optional[str] = None):
        detail = str(cause) if cause is not None else "unknown error"
        super().__init__(f"Failed to fetch HTML ({url}): {detail}")
        self.url = url
        self.cause = cause
        self.state = state


class FetchTimeout(FetchError):
    pass


class NavigationError(FetchError):
    pass
