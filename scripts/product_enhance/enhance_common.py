#!/usr/bin/env python3
"""
Shared batch machinery for the product image enhancers.

Pipeline (per record, strictly sequential):
1. Read one product record from the JSONL input.
2. Download the source image into the working directory.
3. Hand the image to a backend (Gemini SDK or OpenRouter) for enhancement.
4. Normalize the result to JPEG and write it to the final directory.
5. Append the record (plus `localUpdatedFile`) to the manifest.

A failing record is logged and skipped; the manifest is always written.
"""

from __future__ import annotations

import argparse
import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

import httpx
from dotenv import load_dotenv
from PIL import Image

DEFAULT_INPUT = Path("fragrances_with_images_fast.jsonl")
DEFAULT_WORKING_DIR = Path("working")
DEFAULT_FINAL_DIR = Path("final")
DEFAULT_BACKGROUND = Path("bg.png")
MANIFEST_NAME = "data.json"

SAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9._-]")
DATA_URL_RE = re.compile(r"^data:image/[a-zA-Z0-9+.-]+;base64,(.+)$", re.IGNORECASE | re.DOTALL)


class DownloadError(RuntimeError):
    pass


class ApiHttpError(RuntimeError):
    def __init__(self, status: int, raw_text: str, message: Optional[str] = None):
        self.status = status
        self.raw_text = raw_text
        super().__init__(message or f"HTTP {status}")


class ImageNotFoundError(ValueError):
    pass


@dataclass
class ProductItem:
    index: int
    fields: Dict[str, Any]

    @property
    def brand(self) -> str:
        return self.fields.get("brand") or "brand"

    @property
    def name(self) -> str:
        return self.fields.get("name") or f"item_{self.index}"

    @property
    def image_url(self) -> Optional[str]:
        return self.fields.get("imageUrl") or None

    @property
    def base_name(self) -> str:
        return safe_filename(f"{self.brand}_{self.name}")


@dataclass
class EnhanceJob:
    item: ProductItem
    source_url: str
    source_path: Path
    source_bytes: bytes
    source_mime: Optional[str]


@dataclass
class RunReport:
    records_total: int = 0
    invalid_lines: int = 0
    skipped_no_url: int = 0
    attempted: int = 0
    enhanced: int = 0
    failed: int = 0
    outputs: List[Dict[str, Any]] = field(default_factory=list)


Enhancer = Callable[[EnhanceJob], bytes]


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    logging.getLogger("PIL").setLevel(logging.INFO)
    # Avoid leaking API keys in verbose transport logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def load_env() -> None:
    load_dotenv(override=False)


def ensure_dirs(*paths: Path) -> None:
    for path in paths:
        path.mkdir(parents=True, exist_ok=True)


def add_batch_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--input",
        type=Path,
        default=DEFAULT_INPUT,
        help=f"JSONL file with one product record per line (default: {DEFAULT_INPUT}).",
    )
    parser.add_argument(
        "--working-dir",
        type=Path,
        default=DEFAULT_WORKING_DIR,
        help=f"Directory for downloaded source images (default: {DEFAULT_WORKING_DIR}).",
    )
    parser.add_argument(
        "--final-dir",
        type=Path,
        default=DEFAULT_FINAL_DIR,
        help=f"Directory for enhanced images and {MANIFEST_NAME} (default: {DEFAULT_FINAL_DIR}).",
    )
    parser.add_argument(
        "--background",
        type=Path,
        default=DEFAULT_BACKGROUND,
        help=f"Optional background image sent with every request (default: {DEFAULT_BACKGROUND}).",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Stop after this many successfully enhanced records (default: all).",
    )
    parser.add_argument(
        "--timeout-seconds",
        type=float,
        default=120.0,
        help="Timeout for downloads and API requests in seconds (default: 120).",
    )
    parser.add_argument(
        "--jpeg-quality",
        type=int,
        default=90,
        help="JPEG quality used for enhanced images (1-100, default: 90).",
    )
    parser.add_argument(
        "--keep-format",
        action="store_true",
        help="Write the API image bytes untouched instead of re-encoding to JPEG.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )


def validate_batch_arguments(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    if args.limit is not None and args.limit < 0:
        parser.error("--limit must be >= 0")
    if args.timeout_seconds <= 0:
        parser.error("--timeout-seconds must be > 0")
    if args.jpeg_quality < 1 or args.jpeg_quality > 100:
        parser.error("--jpeg-quality must be between 1 and 100")


def safe_filename(base: str) -> str:
    return SAFE_NAME_RE.sub("_", base) or "item"


def read_jsonl(path: Path, report: Optional[RunReport] = None) -> Iterator[Dict[str, Any]]:
    # Undecodable bytes become U+FFFD; such lines then fail JSON parsing or pass through.
    content = path.read_text(encoding="utf-8", errors="replace")
    for line in re.split(r"\r?\n", content):
        if not line:
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            record = None
        if not isinstance(record, dict):
            logging.warning("Skipping invalid JSONL line: %s", line)
            if report is not None:
                report.invalid_lines += 1
            continue
        yield record


def iter_items(path: Path, report: RunReport) -> Iterator[ProductItem]:
    """Yield product items with 1-based indices (skipped lines do not count)."""
    for index, record in enumerate(read_jsonl(path, report), start=1):
        report.records_total += 1
        yield ProductItem(index=index, fields=record)


def decode_data_url(value: Any) -> Optional[bytes]:
    if not isinstance(value, str):
        return None
    match = DATA_URL_RE.match(value)
    if not match:
        return None
    try:
        return base64.b64decode(match.group(1))
    except binascii.Error:
        return None


def detect_mime_from_image_bytes(data: bytes) -> Optional[str]:
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith(b"RIFF") and data[8:12] == b"WEBP":
        return "image/webp"
    if data.startswith(b"GIF87a") or data.startswith(b"GIF89a"):
        return "image/gif"
    if data.startswith(b"BM"):
        return "image/bmp"
    return None


def download_file(client: httpx.Client, url: str, dest: Path, timeout_seconds: float) -> bytes:
    response = client.get(url, follow_redirects=True, timeout=httpx.Timeout(timeout_seconds))
    if response.status_code >= 400:
        raise DownloadError(f"Failed to download {url}: {response.status_code}")
    data = response.content
    dest.write_bytes(data)
    return data


def fetch_image_bytes(client: httpx.Client, url: str, timeout_seconds: float) -> bytes:
    response = client.get(url, follow_redirects=True, timeout=httpx.Timeout(timeout_seconds))
    if not response.is_success:
        raise DownloadError(
            f"Failed to fetch image url: {response.status_code} {response.reason_phrase}"
        )
    return response.content


def load_background(path: Path) -> Optional[bytes]:
    if not path.is_file():
        logging.warning("Background image %s not found. Proceeding without background.", path)
        return None
    try:
        return path.read_bytes()
    except OSError as exc:
        logging.warning("Could not read background image %s (%s). Proceeding without background.", path, exc)
        return None


def encode_jpeg(image_bytes: bytes, quality: int) -> bytes:
    with Image.open(BytesIO(image_bytes)) as img:
        rgb = img.convert("RGB")
        out = BytesIO()
        rgb.save(out, format="JPEG", quality=quality, optimize=True)
        return out.getvalue()


def write_manifest(path: Path, records: List[Dict[str, Any]]) -> None:
    path.write_text(json.dumps(records, indent=2, ensure_ascii=False), encoding="utf-8")


def run_batch(
    input_path: Path,
    working_dir: Path,
    final_dir: Path,
    enhancer: Enhancer,
    client: httpx.Client,
    label: str,
    limit: Optional[int] = None,
    timeout_seconds: float = 120.0,
    jpeg_quality: int = 90,
    keep_format: bool = False,
) -> RunReport:
    report = RunReport()
    ensure_dirs(working_dir, final_dir)

    for item in iter_items(input_path, report):
        source_url = item.image_url
        if not source_url:
            logging.warning("Skipping item without imageUrl: %s %s", item.brand, item.name)
            report.skipped_no_url += 1
            continue

        base_name = item.base_name
        working_file = working_dir / f"{base_name}.jpg"
        final_file = final_dir / f"{base_name}.jpg"

        report.attempted += 1
        try:
            logging.info("Began working on: %s.jpg", base_name)
            source_bytes = download_file(client, source_url, working_file, timeout_seconds)
            job = EnhanceJob(
                item=item,
                source_url=source_url,
                source_path=working_file,
                source_bytes=source_bytes,
                source_mime=detect_mime_from_image_bytes(source_bytes),
            )
            enhanced = enhancer(job)
            if not keep_format:
                enhanced = encode_jpeg(enhanced, jpeg_quality)
            final_file.write_bytes(enhanced)
        except Exception as exc:  # noqa: BLE001
            logging.error("Failed (%s): %s - %s: %s", label, item.brand, item.name, exc)
            logging.debug("Failure details for %s", base_name, exc_info=True)
            report.failed += 1
            continue

        report.outputs.append({**item.fields, "localUpdatedFile": str(final_file.resolve())})
        report.enhanced += 1
        logging.info("Completed work: %s.jpg", base_name)
        if limit and report.enhanced >= limit:
            break

    manifest_path = final_dir / MANIFEST_NAME
    write_manifest(manifest_path, report.outputs)
    logging.info("Wrote %d records to %s", len(report.outputs), manifest_path)
    return report


def log_summary(report: RunReport) -> None:
    logging.info("---- Enhance Summary ----")
    logging.info("Records read: %d | invalid lines: %d", report.records_total, report.invalid_lines)
    logging.info("Skipped (no imageUrl): %d", report.skipped_no_url)
    logging.info(
        "Attempted: %d | enhanced: %d | failed: %d",
        report.attempted,
        report.enhanced,
        report.failed,
    )
