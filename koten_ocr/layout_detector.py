"""Text-region detection with an RTMDet-style object detector."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

import numpy as np

from .config import (
    DEFAULT_DETECTOR_CONFIG,
    DetectorConfig,
    PathLike,
    detector_overrides,
    load_config_document,
    resolve_config,
)
from .errors import DetectionError, NotInitializedError
from .image_io import ImageInput
from .inference import InferenceSession, SessionLoader, load_session, open_session
from .layout_post import decode_raw_detections, non_max_suppression, to_detections
from .layout_types import Detection, PreprocessMetadata
from .preprocessing import preprocess_for_detection

logger = logging.getLogger(__name__)

_DETS_OUTPUT = "dets"
_LABELS_OUTPUT = "labels"


class LayoutDetector:
    """Detects text-line regions and returns them score-ordered after NMS."""

    def __init__(
        self,
        config: DetectorConfig = DEFAULT_DETECTOR_CONFIG,
        *,
        loader: SessionLoader = load_session,
    ) -> None:
        self.config = config
        self._loader = loader
        self._session: Optional[InferenceSession] = None

    @property
    def initialized(self) -> bool:
        return self._session is not None

    def initialize(
        self,
        model_path: PathLike,
        config: Optional[Mapping[str, Any]] = None,
        *,
        config_path: Optional[PathLike] = None,
        session_options: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Resolve configuration and load the detection model.

        ``config_path`` names a YAML document whose ``layout_detection``
        section overrides the defaults; ``config`` overrides both.
        """
        document = load_config_document(config_path)
        self.config = resolve_config(self.config, detector_overrides(document), config)
        self._session = open_session(self._loader, model_path, session_options)
        logger.info(
            "Layout detector ready (input=%s, score>=%.2f, nms=%.2f, max=%d)",
            self.config.input_shape,
            self.config.score_threshold,
            self.config.nms_threshold,
            self.config.max_detections,
        )

    def _run(self, tensor: np.ndarray) -> Dict[str, np.ndarray]:
        if self._session is None:
            raise NotInitializedError("LayoutDetector.initialize() must be called first")
        feeds = {self._session.input_names[0]: tensor}
        try:
            return self._session.run(feeds)
        except Exception as exc:
            raise DetectionError(str(exc)) from exc

    def _split_outputs(self, outputs: Mapping[str, np.ndarray]):
        if _DETS_OUTPUT in outputs:
            return outputs[_DETS_OUTPUT], outputs.get(_LABELS_OUTPUT)
        values = list(outputs.values())
        if not values:
            raise DetectionError("Detector returned no outputs")
        return values[0], values[1] if len(values) > 1 else None

    def postprocess(
        self, outputs: Mapping[str, np.ndarray], metadata: PreprocessMetadata
    ) -> List[Detection]:
        """Decode, threshold, map to image space, then apply NMS."""
        dets, labels = self._split_outputs(outputs)
        raw = decode_raw_detections(dets, labels)
        candidates = to_detections(
            raw,
            metadata,
            score_threshold=self.config.score_threshold,
            vertical_expand_ratio=self.config.vertical_expand_ratio,
        )
        kept = non_max_suppression(
            candidates,
            self.config.nms_threshold,
            max_detections=self.config.max_detections,
        )
        logger.debug(
            "detect: %d raw, %d above threshold, %d after NMS",
            len(raw),
            len(candidates),
            len(kept),
        )
        return kept

    def detect(self, image: ImageInput) -> List[Detection]:
        """Return text regions of ``image`` in original pixel coordinates."""
        if self._session is None:
            raise NotInitializedError("LayoutDetector.initialize() must be called first")

        tensor, metadata = preprocess_for_detection(
            image, self.config.input_shape, self.config.mean, self.config.std
        )
        outputs = self._run(tensor)
        return self.postprocess(outputs, metadata)
