"""Inference session loading for ONNX and TorchScript models."""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

import numpy as np

from .errors import ModelLoadError

logger = logging.getLogger(__name__)

_ONNX_SUFFIXES = {".onnx"}
_TORCH_SUFFIXES = {".pt", ".pth", ".ts", ".torchscript"}


class InferenceSession(Protocol):
    """Synchronous tensor-in/tensor-out model contract."""

    input_names: List[str]
    output_names: List[str]

    def run(self, feeds: Mapping[str, np.ndarray]) -> Dict[str, np.ndarray]:
        ...


SessionLoader = Callable[[str, Optional[Mapping[str, Any]]], InferenceSession]


class OnnxSession:
    """onnxruntime-backed session; calls are serialized per instance."""

    def __init__(self, session: Any) -> None:
        self._session = session
        self._lock = threading.Lock()
        self.input_names = [node.name for node in session.get_inputs()]
        self.output_names = [node.name for node in session.get_outputs()]

    def run(self, feeds: Mapping[str, np.ndarray]) -> Dict[str, np.ndarray]:
        with self._lock:
            outputs = self._session.run(self.output_names, dict(feeds))
        return dict(zip(self.output_names, outputs))


class TorchScriptSession:
    """TorchScript-backed session mirroring the ONNX session contract."""

    def __init__(
        self,
        module: Any,
        device: Any,
        input_names: Sequence[str] = ("input",),
        output_names: Sequence[str] = ("output",),
    ) -> None:
        self._module = module
        self._device = device
        self._lock = threading.Lock()
        self.input_names = list(input_names)
        self.output_names = list(output_names)

    def run(self, feeds: Mapping[str, np.ndarray]) -> Dict[str, np.ndarray]:
        import torch

        args = [
            torch.from_numpy(np.ascontiguousarray(feeds[name])).to(self._device)
            for name in self.input_names
        ]
        with self._lock, torch.no_grad():
            outputs = self._module(*args)
        if not isinstance(outputs, (list, tuple)):
            outputs = (outputs,)
        names = self.output_names
        if len(names) < len(outputs):
            names = names + [f"output_{i}" for i in range(len(names), len(outputs))]
        return {
            name: tensor.detach().cpu().numpy() for name, tensor in zip(names, outputs)
        }


def _resolve_device(preferred: Optional[str] = None):
    import torch

    if preferred:
        return torch.device(preferred)
    return torch.device("cuda" if torch.cuda.is_available() else "cpu")


def _load_onnx(path: Path, options: Mapping[str, Any]) -> OnnxSession:
    import onnxruntime as ort

    session_options = ort.SessionOptions()
    session_options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
    providers = list(options.get("providers") or ["CPUExecutionProvider"])
    session = ort.InferenceSession(str(path), sess_options=session_options, providers=providers)
    return OnnxSession(session)


def _load_torchscript(path: Path, options: Mapping[str, Any]) -> TorchScriptSession:
    import torch

    device = _resolve_device(options.get("device"))
    module = torch.jit.load(str(path), map_location=device)
    module.eval()
    return TorchScriptSession(
        module,
        device,
        input_names=options.get("input_names") or ("input",),
        output_names=options.get("output_names") or ("output",),
    )


def load_session(
    path: "str | os.PathLike[str]", options: Optional[Mapping[str, Any]] = None
) -> InferenceSession:
    """Load a model file into an inference session.

    The backend is chosen from the file suffix. Any failure, including a
    missing file or an unsupported suffix, raises ``ModelLoadError``.
    """
    model_path = Path(path)
    options = options or {}
    suffix = model_path.suffix.lower()

    if not model_path.is_file():
        raise ModelLoadError(f"Model file not found: {model_path}")

    logger.info("Loading model %s", model_path)
    try:
        if suffix in _ONNX_SUFFIXES:
            session: InferenceSession = _load_onnx(model_path, options)
        elif suffix in _TORCH_SUFFIXES:
            session = _load_torchscript(model_path, options)
        else:
            raise ModelLoadError(
                f"Unsupported model format '{suffix}'. "
                f"Choose from: {', '.join(sorted(_ONNX_SUFFIXES | _TORCH_SUFFIXES))}."
            )
    except ModelLoadError:
        raise
    except Exception as exc:
        raise ModelLoadError(f"Failed to load model {model_path}: {exc}") from exc

    logger.info(
        "Loaded %s (inputs=%s, outputs=%s)",
        model_path.name,
        session.input_names,
        session.output_names,
    )
    return session


def open_session(
    loader: SessionLoader,
    path: "str | os.PathLike[str]",
    options: Optional[Mapping[str, Any]] = None,
) -> InferenceSession:
    """Call ``loader`` and normalize any failure into ``ModelLoadError``."""
    try:
        return loader(str(path), options)
    except ModelLoadError:
        raise
    except Exception as exc:
        raise ModelLoadError(f"Failed to load model {path}: {exc}") from exc
