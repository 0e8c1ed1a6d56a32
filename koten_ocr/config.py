"""Component configuration, YAML document loading and override resolution."""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, TypeVar, Union

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "KOTEN_OCR_CONFIG"

PathLike = Union[str, "os.PathLike[str]"]
ConfigT = TypeVar("ConfigT")


@dataclass(frozen=True)
class DetectorConfig:
    input_shape: Tuple[int, int, int, int] = (1, 3, 1280, 1280)
    score_threshold: float = 0.3
    nms_threshold: float = 0.5
    max_detections: int = 100
    # Top and bottom edges grow by this fraction of the box height.
    vertical_expand_ratio: float = 0.02
    mean: Tuple[float, float, float] = (123.675, 116.28, 103.53)
    std: Tuple[float, float, float] = (58.395, 57.12, 57.375)


@dataclass(frozen=True)
class RecognizerConfig:
    input_shape: Tuple[int, int, int, int] = (1, 3, 32, 384)
    max_length: int = 25
    rotate_clockwise: bool = True


@dataclass(frozen=True)
class ReadingOrderConfig:
    vertical_mode: bool = True
    cut_samples: int = 20
    same_line_tolerance: float = 20.0


@dataclass(frozen=True)
class OutputConfig:
    xml_encoding: str = "UTF-8"
    xml_include_confidence: bool = True
    json_include_confidence: bool = True
    json_include_metadata: bool = True
    txt_separator: str = "\n"
    txt_include_bounding_box: bool = False
    engine: str = "koten-ocr"
    version: str = "1.0.0"


DEFAULT_DETECTOR_CONFIG = DetectorConfig()
DEFAULT_RECOGNIZER_CONFIG = RecognizerConfig()
DEFAULT_READING_ORDER_CONFIG = ReadingOrderConfig()
DEFAULT_OUTPUT_CONFIG = OutputConfig()


def default_config_path() -> Optional[str]:
    """Return the config path named by ``KOTEN_OCR_CONFIG``, if set."""
    value = os.environ.get(CONFIG_ENV_VAR, "").strip()
    return value or None


def load_config_document(path: Optional[PathLike]) -> Dict[str, Any]:
    """Read a YAML config document.

    A missing path, unreadable file or malformed document is not an error:
    the problem is logged and an empty mapping is returned so callers fall
    back to built-in defaults.
    """
    if not path:
        return {}

    config_path = Path(path)
    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning("Could not read config %s (%s); using defaults", config_path, exc)
        return {}

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        logger.warning("Malformed config %s (%s); using defaults", config_path, exc)
        return {}

    if document is None:
        return {}
    if not isinstance(document, dict):
        logger.warning(
            "Config %s is a %s, expected a mapping; using defaults",
            config_path,
            type(document).__name__,
        )
        return {}
    return document


def config_section(document: Mapping[str, Any], *keys: str) -> Dict[str, Any]:
    """Return the nested mapping at ``keys`` or an empty dict."""
    node: Any = document
    for key in keys:
        if not isinstance(node, Mapping):
            return {}
        node = node.get(key)
    return dict(node) if isinstance(node, Mapping) else {}


_REJECTED = object()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _coerce(value: Any, default: Any) -> Any:
    """Fit ``value`` to the type of ``default``; ``_REJECTED`` when it cannot."""
    if isinstance(default, tuple):
        if not isinstance(value, (list, tuple)) or len(value) != len(default):
            return _REJECTED
        if all(_is_number(item) for item in default) and not all(
            _is_number(item) for item in value
        ):
            return _REJECTED
        return tuple(value)
    if isinstance(default, bool):
        return value if isinstance(value, bool) else _REJECTED
    if isinstance(default, float):
        return float(value) if _is_number(value) else _REJECTED
    if isinstance(default, int):
        return value if isinstance(value, int) and not isinstance(value, bool) else _REJECTED
    if isinstance(default, str):
        return value if isinstance(value, str) else _REJECTED
    return value


def resolve_config(
    defaults: ConfigT,
    file_overrides: Optional[Mapping[str, Any]] = None,
    caller_overrides: Optional[Mapping[str, Any]] = None,
) -> ConfigT:
    """Merge overrides onto ``defaults``; caller overrides win over file ones.

    Only fields the config dataclass declares are applied. ``None`` values
    are treated as absent, and a value whose type does not fit the field
    is logged and skipped so the previous value stands.
    """
    known = {f.name: getattr(defaults, f.name) for f in dataclasses.fields(defaults)}
    changes: Dict[str, Any] = {}
    for source in (file_overrides, caller_overrides):
        if not source:
            continue
        for key, value in source.items():
            if key not in known:
                logger.debug("Ignoring unknown %s key %r", type(defaults).__name__, key)
                continue
            if value is None:
                continue
            coerced = _coerce(value, known[key])
            if coerced is _REJECTED:
                logger.warning(
                    "Ignoring %s.%s=%r; expected a value like %r",
                    type(defaults).__name__,
                    key,
                    value,
                    known[key],
                )
                continue
            changes[key] = coerced
    return dataclasses.replace(defaults, **changes)


def detector_overrides(document: Mapping[str, Any]) -> Dict[str, Any]:
    return config_section(document, "layout_detection")


def recognizer_overrides(document: Mapping[str, Any]) -> Dict[str, Any]:
    return config_section(document, "text_recognition")


def reading_order_overrides(document: Mapping[str, Any]) -> Dict[str, Any]:
    return config_section(document, "reading_order")


def output_overrides(document: Mapping[str, Any]) -> Dict[str, Any]:
    """Flatten ``output_generation.{xml,json,txt}`` into ``OutputConfig`` keys."""
    section = config_section(document, "output_generation")
    flat: Dict[str, Any] = {}
    for group in ("xml", "json", "txt"):
        values = section.get(group)
        if not isinstance(values, Mapping):
            continue
        for key, value in values.items():
            flat[f"{group}_{key}"] = value
    return flat


def charset_from_document(document: Mapping[str, Any]) -> Optional[str]:
    """Return ``model.charset_train`` when present as a string."""
    model = document.get("model") if isinstance(document, Mapping) else None
    if isinstance(model, Mapping):
        charset = model.get("charset_train")
        if isinstance(charset, str):
            return charset
    return None
