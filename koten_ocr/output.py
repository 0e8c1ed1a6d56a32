"""Serialization of ordered OCR results to text, JSON, XML and TEI."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from xml.sax.saxutils import escape

from .config import DEFAULT_OUTPUT_CONFIG, OutputConfig
from .layout_post import round_half_up
from .layout_types import Detection, OCRResult, RecognizedDetection

logger = logging.getLogger(__name__)

TEI_NAMESPACE = "http://www.tei-c.org/ns/1.0"

_XML_ENTITIES = {'"': "&quot;", "'": "&apos;"}


def escape_xml(value: Any) -> str:
    """Escape ``& < > " '`` for element text and attribute values."""
    return escape(str(value), _XML_ENTITIES)


def _text_of(detection: Detection) -> str:
    return getattr(detection, "text", "") or ""


def _geometry(detection: Detection) -> Dict[str, int]:
    box = detection.box
    return {
        "x": round_half_up(box.x1),
        "y": round_half_up(box.y1),
        "width": round_half_up(box.x2 - box.x1),
        "height": round_half_up(box.y2 - box.y1),
    }


def _image_name(names: Sequence[str], index: int) -> str:
    if index < len(names) and names[index]:
        return names[index]
    return f"image_{index + 1}"


class OutputGenerator:
    """Builds every export format from detections already in reading order."""

    def __init__(self, config: OutputConfig = DEFAULT_OUTPUT_CONFIG) -> None:
        self.config = config

    def _metadata(self) -> Dict[str, Any]:
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": self.config.version,
            "engine": self.config.engine,
        }

    def _xml_header(self) -> str:
        return f'<?xml version="1.0" encoding="{escape_xml(self.config.xml_encoding)}"?>\n'

    def generate_text(self, detections: Sequence[RecognizedDetection]) -> str:
        """Join the recognized lines with the configured separator."""
        logger.debug("Generating text for %d regions", len(detections))
        lines = []
        for index, detection in enumerate(detections, 1):
            line = _text_of(detection)
            if self.config.txt_include_bounding_box:
                box = detection.box
                line = (
                    f"[{index}] ({round_half_up(box.x1)},{round_half_up(box.y1)},"
                    f"{round_half_up(box.x2)},{round_half_up(box.y2)}): {line}"
                )
            lines.append(line)
        return self.config.txt_separator.join(lines)

    def _text_elements(self, detections: Sequence[RecognizedDetection]) -> List[Dict[str, Any]]:
        elements = []
        for index, detection in enumerate(detections, 1):
            element: Dict[str, Any] = {"id": index}
            element.update(_geometry(detection))
            element["text"] = _text_of(detection)
            if self.config.json_include_confidence and detection.score is not None:
                element["confidence"] = round(float(detection.score), 4)
            elements.append(element)
        return elements

    def generate_json(
        self,
        detections: Sequence[RecognizedDetection],
        image_width: int,
        image_height: int,
        image_name: str = "image",
    ) -> Dict[str, Any]:
        logger.debug("Generating JSON for %d regions", len(detections))
        output: Dict[str, Any] = {
            "document": {
                "image": {
                    "name": image_name,
                    "width": image_width,
                    "height": image_height,
                    "text": self._text_elements(detections),
                }
            }
        }
        if detections and self.config.json_include_metadata:
            output["metadata"] = self._metadata()
        return output

    def generate_xml(
        self,
        detections: Sequence[RecognizedDetection],
        image_width: int,
        image_height: int,
        image_name: str = "image",
        image_url: Optional[str] = None,
    ) -> str:
        """Minimal ``<text><body><p>`` document, one escaped line per region.

        Regions whose text is empty contribute no line.
        """
        logger.debug("Generating XML for %d regions", len(detections))
        parts = [self._xml_header(), "<text>\n  <body>\n    <p>\n"]
        if image_url:
            parts.append(f'      <pb n="1" facs="{escape_xml(image_url)}"/>\n')
        for detection in detections:
            text = escape_xml(_text_of(detection))
            if text:
                parts.append(f"      {text}\n")
        parts.append("    </p>\n  </body>\n</text>")
        return "".join(parts)

    def generate_combined_xml(
        self, results: Sequence[OCRResult], image_names: Sequence[str] = ()
    ) -> str:
        parts = [self._xml_header(), "<document>\n"]
        for page, result in enumerate(results):
            name = _image_name(image_names, page)
            parts.append(
                f'  <image name="{escape_xml(name)}" width="{result.image_width}"'
                f' height="{result.image_height}">\n'
            )
            for index, detection in enumerate(result.detections, 1):
                geometry = _geometry(detection)
                attributes = (
                    f'id="{index}" x="{geometry["x"]}" y="{geometry["y"]}"'
                    f' width="{geometry["width"]}" height="{geometry["height"]}"'
                )
                if self.config.xml_include_confidence and detection.score is not None:
                    attributes += f' confidence="{float(detection.score):.4f}"'
                parts.append(f"    <text {attributes}>{escape_xml(_text_of(detection))}</text>\n")
            parts.append("  </image>\n")
        parts.append("</document>")
        return "".join(parts)

    def generate_combined_json(
        self, results: Sequence[OCRResult], image_names: Sequence[str] = ()
    ) -> Dict[str, Any]:
        images = []
        for page, result in enumerate(results):
            images.append(
                {
                    "name": _image_name(image_names, page),
                    "width": result.image_width,
                    "height": result.image_height,
                    "text": self._text_elements(result.detections),
                }
            )

        output: Dict[str, Any] = {"document": {"images": images}}
        if results and self.config.json_include_metadata:
            metadata = self._metadata()
            metadata["fileCount"] = len(results)
            output["metadata"] = metadata
        return output

    def generate_combined_text(
        self, results: Sequence[OCRResult], image_names: Sequence[str] = ()
    ) -> str:
        pages = []
        for page, result in enumerate(results):
            name = _image_name(image_names, page)
            pages.append(f"===== {name} =====\n{result.text}")
        return "\n\n".join(pages)

    def generate_tei(
        self,
        results: Sequence[OCRResult],
        image_names: Sequence[str] = (),
        *,
        title: str = "OCR Results",
        source_url: Optional[str] = None,
        image_urls: Sequence[Optional[str]] = (),
    ) -> str:
        """TEI P5 document with one facsimile surface and zone per line.

        Zone ids are ``zone-{page}-{line}`` (both 1-based) and each ``<lb>``
        points at its zone, so ids are unique across the whole document.
        """
        facsimile: List[str] = []
        body: List[str] = []

        for page_index, result in enumerate(results):
            page = page_index + 1
            name = _image_name(image_names, page_index)
            url = image_urls[page_index] if page_index < len(image_urls) else None
            url = url or result.image_url or name
            surface_id = f"surface-{page}"

            facsimile.append(
                f'    <surface xml:id="{surface_id}" ulx="0" uly="0"'
                f' lrx="{result.image_width}" lry="{result.image_height}">\n'
                f'      <graphic url="{escape_xml(url)}" width="{result.image_width}px"'
                f' height="{result.image_height}px"/>\n'
            )
            body.append(f'        <pb n="{page}" facs="#{surface_id}"/>\n')

            for line, detection in enumerate(result.detections, 1):
                zone_id = f"zone-{page}-{line}"
                box = detection.box
                facsimile.append(
                    f'      <zone xml:id="{zone_id}" ulx="{round_half_up(box.x1)}"'
                    f' uly="{round_half_up(box.y1)}" lrx="{round_half_up(box.x2)}"'
                    f' lry="{round_half_up(box.y2)}"/>\n'
                )
                body.append(
                    f'        <lb facs="#{zone_id}"/>{escape_xml(_text_of(detection))}\n'
                )
            facsimile.append("    </surface>\n")

        source = escape_xml(source_url) if source_url else "Digitized images"
        return "".join(
            [
                '<?xml version="1.0" encoding="UTF-8"?>\n',
                f'<TEI xmlns="{TEI_NAMESPACE}">\n',
                "  <teiHeader>\n",
                "    <fileDesc>\n",
                f"      <titleStmt>\n        <title>{escape_xml(title)}</title>\n      </titleStmt>\n",
                "      <publicationStmt>\n"
                f"        <p>Generated by {escape_xml(self.config.engine)} {escape_xml(self.config.version)}</p>\n"
                "      </publicationStmt>\n",
                f"      <sourceDesc>\n        <p>{source}</p>\n      </sourceDesc>\n",
                "    </fileDesc>\n",
                "  </teiHeader>\n",
                "  <facsimile>\n",
                *facsimile,
                "  </facsimile>\n",
                "  <text>\n    <body>\n      <p>\n",
                *body,
                "      </p>\n    </body>\n  </text>\n",
                "</TEI>\n",
            ]
        )


def generate_text(detections: Sequence[RecognizedDetection]) -> str:
    return OutputGenerator().generate_text(detections)


def generate_json(
    detections: Sequence[RecognizedDetection],
    image_width: int,
    image_height: int,
    image_name: str = "image",
) -> Dict[str, Any]:
    return OutputGenerator().generate_json(detections, image_width, image_height, image_name)


def generate_xml(
    detections: Sequence[RecognizedDetection],
    image_width: int,
    image_height: int,
    image_name: str = "image",
    image_url: Optional[str] = None,
) -> str:
    return OutputGenerator().generate_xml(
        detections, image_width, image_height, image_name, image_url
    )
