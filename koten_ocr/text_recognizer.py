"""Line recognition with a PARSeq-style sequence model."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Mapping, Optional, Sequence, Union

import numpy as np

from .config import (
    DEFAULT_RECOGNIZER_CONFIG,
    PathLike,
    RecognizerConfig,
    charset_from_document,
    load_config_document,
    recognizer_overrides,
    resolve_config,
)
from .errors import NotInitializedError, RecognitionError
from .image_io import ImageInput
from .inference import InferenceSession, SessionLoader, load_session, open_session
from .preprocessing import preprocess_for_recognition

logger = logging.getLogger(__name__)

# Class ids 0-3 are <eos>, <s>, <pad>, <unk>. Characters start at id 4 and
# map to ``charset[id - 1]``; this offset belongs to the model's training
# tokenizer and must track the vocabulary file shipped with the model.
EOS_INDEX = 0
SPECIAL_TOKEN_COUNT = 4
VOCAB_OFFSET = 1

CharList = Union[str, Sequence[str]]


def decode_logits(
    logits: np.ndarray, char_list: Sequence[str], max_length: Optional[int] = None
) -> str:
    """Greedy-decode a ``(seq_len, vocab)`` logit matrix into text.

    Decoding stops at the first ``<eos>``, skips the other special tokens,
    and emits a character only when its class id differs from the last
    accepted class id, so repeats separated by special tokens still
    collapse. ``max_length`` caps the positions read to ``max_length + 1``.
    """
    matrix = np.asarray(logits)
    if matrix.ndim == 3:
        matrix = matrix[0]
    if matrix.ndim != 2:
        raise RecognitionError(f"Expected (seq_len, vocab) logits, got shape {matrix.shape}")
    if max_length is not None:
        matrix = matrix[: max_length + 1]

    chars: List[str] = []
    prev_class_id = -1
    for index in np.argmax(matrix, axis=-1):
        index = int(index)
        if index == EOS_INDEX:
            break
        if index < SPECIAL_TOKEN_COUNT:
            continue
        class_id = index - VOCAB_OFFSET
        if class_id == prev_class_id:
            continue
        prev_class_id = class_id
        if class_id < len(char_list):
            chars.append(char_list[class_id])
        else:
            logger.debug("Class id %d outside vocabulary of %d", class_id, len(char_list))
    return "".join(chars)


def load_char_list(path: PathLike) -> List[str]:
    """Read a vocabulary from a YAML ``model.charset_train`` entry or plain text."""
    charset_path = Path(path)
    if charset_path.suffix.lower() in {".yaml", ".yml"}:
        charset = charset_from_document(load_config_document(charset_path))
        if charset is None:
            logger.warning("No model.charset_train in %s", charset_path)
            return []
        return list(charset)
    try:
        text = charset_path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning("Could not read charset %s (%s)", charset_path, exc)
        return []
    return list(text.rstrip("\r\n"))


class TextRecognizer:
    """Reads the characters of one cropped text line."""

    def __init__(
        self,
        config: RecognizerConfig = DEFAULT_RECOGNIZER_CONFIG,
        *,
        loader: SessionLoader = load_session,
    ) -> None:
        self.config = config
        self.char_list: List[str] = []
        self._loader = loader
        self._session: Optional[InferenceSession] = None

    @property
    def initialized(self) -> bool:
        return self._session is not None

    def initialize(
        self,
        model_path: PathLike,
        config: Optional[Mapping[str, Any]] = None,
        char_list: Optional[CharList] = None,
        *,
        config_path: Optional[PathLike] = None,
        charset_path: Optional[PathLike] = None,
        session_options: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Resolve configuration, vocabulary and load the recognition model.

        The vocabulary comes from ``char_list`` when given, else from
        ``charset_path``, else from ``model.charset_train`` in the config
        document.
        """
        document = load_config_document(config_path)
        self.config = resolve_config(self.config, recognizer_overrides(document), config)

        if char_list is not None:
            self.char_list = list(char_list)
        elif charset_path is not None:
            self.char_list = load_char_list(charset_path)
        else:
            self.char_list = list(charset_from_document(document) or "")
        if not self.char_list:
            logger.warning("Recognizer vocabulary is empty; every line will decode to ''")

        self._session = open_session(self._loader, model_path, session_options)
        logger.info(
            "Text recognizer ready (input=%s, %d characters)",
            self.config.input_shape,
            len(self.char_list),
        )

    def read(self, image: ImageInput) -> str:
        """Return the text in a cropped line image ('' when nothing decodes)."""
        if self._session is None:
            raise NotInitializedError("TextRecognizer.initialize() must be called first")

        tensor = preprocess_for_recognition(
            image,
            self.config.input_shape,
            rotate_clockwise=self.config.rotate_clockwise,
        )
        feeds = {self._session.input_names[0]: tensor}
        try:
            outputs = self._session.run(feeds)
        except Exception as exc:
            raise RecognitionError(str(exc)) from exc

        name = self._session.output_names[0] if self._session.output_names else None
        if name not in outputs:
            if not outputs:
                raise RecognitionError("Recognizer returned no outputs")
            name = next(iter(outputs))
        return decode_logits(outputs[name], self.char_list, self.config.max_length)
