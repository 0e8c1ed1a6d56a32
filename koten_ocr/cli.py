"""Command-line entry point: run the OCR pipeline over local image files.

Example::

    koten-ocr page1.jpg page2.jpg \\
        --layout-model models/rtmdet.onnx \\
        --recognizer-model models/parseq.onnx \\
        --config models/ndl.yaml --output-dir out
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from .config import default_config_path
from .errors import KotenOCRError
from .image_io import to_rgb_array
from .layout_crops import draw_detections, encode_image_bytes
from .layout_types import OCRResult
from .pipeline import KotenOCRPipeline

logger = logging.getLogger(__name__)

FORMATS = ("txt", "json", "xml", "tei")


def _parse_formats(value: str) -> List[str]:
    formats = [item.strip().lower() for item in value.split(",") if item.strip()]
    unknown = [item for item in formats if item not in FORMATS]
    if unknown:
        raise argparse.ArgumentTypeError(
            f"Unknown format(s) {', '.join(unknown)}; choose from {', '.join(FORMATS)}"
        )
    return formats


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="koten-ocr", description="OCR classical Japanese document images"
    )
    parser.add_argument("images", nargs="+", help="Image files to process, in order")
    parser.add_argument("--layout-model", required=True, help="Layout detection model")
    parser.add_argument("--recognizer-model", required=True, help="Text recognition model")
    parser.add_argument(
        "--config",
        default=None,
        help="YAML config document (defaults to $KOTEN_OCR_CONFIG)",
    )
    parser.add_argument("--charset", default=None, help="Recognizer vocabulary file")
    parser.add_argument("--output-dir", default="ocr_output", help="Directory to save outputs")
    parser.add_argument(
        "--formats",
        type=_parse_formats,
        default=list(FORMATS),
        help="Comma-separated output formats (txt,json,xml,tei)",
    )
    parser.add_argument(
        "--horizontal",
        action="store_true",
        help="Order regions for horizontal writing (default is vertical)",
    )
    parser.add_argument(
        "--annotate", action="store_true", help="Save images with numbered region boxes"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def unique_image_names(paths: Sequence[Path]) -> List[str]:
    """Name each input after its file, numbering repeated stems.

    Output files are keyed by stem, so ``a/page.png`` and ``b/page.jpg``
    become ``page.png`` and ``page_2.jpg``.
    """
    names: List[str] = []
    seen: set = set()
    for index, path in enumerate(paths, 1):
        name, number = path.name, index
        while Path(name).stem in seen:
            name = f"{path.stem}_{number}{path.suffix}"
            number += 1
        seen.add(Path(name).stem)
        names.append(name)
    return names


def _write_json(path: Path, data) -> None:
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


def write_outputs(
    pipeline: KotenOCRPipeline,
    results: Sequence[OCRResult],
    output_dir: Path,
    formats: Sequence[str],
) -> List[Path]:
    """Write per-image files and the combined documents; return written paths."""
    output_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    names = [result.image_name for result in results]

    for result in results:
        stem = Path(result.image_name).stem
        if "txt" in formats:
            path = output_dir / f"{stem}.txt"
            path.write_text(result.text, encoding="utf-8")
            written.append(path)
        if "json" in formats:
            path = output_dir / f"{stem}.json"
            _write_json(path, result.json)
            written.append(path)
        if "xml" in formats:
            path = output_dir / f"{stem}.xml"
            path.write_text(result.xml, encoding="utf-8")
            written.append(path)

    if not results:
        return written

    generator = pipeline.output
    if "txt" in formats:
        path = output_dir / "combined.txt"
        path.write_text(generator.generate_combined_text(results, names), encoding="utf-8")
        written.append(path)
    if "json" in formats:
        path = output_dir / "combined.json"
        _write_json(path, generator.generate_combined_json(results, names))
        written.append(path)
    if "xml" in formats:
        path = output_dir / "combined.xml"
        path.write_text(generator.generate_combined_xml(results, names), encoding="utf-8")
        written.append(path)
    if "tei" in formats:
        path = output_dir / "tei.xml"
        image_urls = [result.image_url for result in results]
        path.write_text(
            generator.generate_tei(results, names, image_urls=image_urls), encoding="utf-8"
        )
        written.append(path)
    return written


def write_annotation(image_path: Path, result: OCRResult, output_dir: Path) -> Path:
    annotated = draw_detections(to_rgb_array(image_path), result.detections)
    data, _ = encode_image_bytes(annotated, format="png")
    out_path = output_dir / f"{Path(result.image_name).stem}_annotated.png"
    out_path.write_bytes(data)
    return out_path


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config_path = args.config or default_config_path()
    try:
        pipeline = KotenOCRPipeline.from_models(
            args.layout_model,
            args.recognizer_model,
            config_path=config_path,
            charset_path=args.charset,
            reading_order_config={"vertical_mode": False} if args.horizontal else None,
        )
    except KotenOCRError as exc:
        logger.error("Initialization failed: %s", exc)
        return 1

    image_paths = [Path(image) for image in args.images]
    names = unique_image_names(image_paths)
    batch = pipeline.process_batch(
        [str(path) for path in image_paths],
        image_names=names,
        image_urls=[path.name for path in image_paths],
    )

    output_dir = Path(args.output_dir)
    for out_path in write_outputs(pipeline, batch.results, output_dir, args.formats):
        print(f"Saved {out_path}")

    if args.annotate:
        sources = dict(zip(names, image_paths))
        for result in batch.results:
            out_path = write_annotation(sources[result.image_name], result, output_dir)
            print(f"Saved {out_path}")

    regions = sum(len(result.detections) for result in batch.results)
    print(
        f"Processed {len(batch.results)}/{len(image_paths)} images, "
        f"{regions} text regions."
    )
    for name, error in batch.failures:
        print(f"Failed {name}: {error}", file=sys.stderr)
    if batch.cancelled:
        print("Processing was cancelled.", file=sys.stderr)

    return 1 if batch.failures else 0


if __name__ == "__main__":
    sys.exit(main())
