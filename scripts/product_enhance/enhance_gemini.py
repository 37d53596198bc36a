#!/usr/bin/env python3
"""Enhance product photos through the Google GenAI SDK (Gemini image model).

Usage:
    python scripts/product_enhance/enhance_gemini.py [--limit N] [--verbose]

Reads `fragrances_with_images_fast.jsonl`, downloads every `imageUrl` into
`working/`, asks Gemini to composite the product onto `bg.png` and writes the
result plus `data.json` into `final/`.
"""

from __future__ import annotations

import argparse
import base64
import logging
import os
import sys
from typing import Any, Iterable, List, Optional

import httpx
from google import genai
from google.genai import types

from enhance_common import (
    EnhanceJob,
    ImageNotFoundError,
    add_batch_arguments,
    configure_logging,
    load_background,
    load_env,
    log_summary,
    run_batch,
    validate_batch_arguments,
)

DEFAULT_MODEL = "gemini-2.5-flash-image-preview"
LABEL = "Gemini"

DEFAULT_PROMPT = (
    "Place the provided fragrance bottle onto the provided background image to create a professional "
    "studio shot with a clean solid look (white or light neutral). Use soft, diffused, even lighting with "
    "realistic reflections and gentle shadows that match the background. Keep the original product, label, "
    "and shape unchanged. Remove noise, glare, harsh shadows, and distracting elements. Ensure the final "
    "image is a widescreen 16:9 product image (e.g., 1920x1080) with the product centered. Do NOT stretch "
    "or distort the product; extend or blend the background canvas as needed to maintain 16:9. Return only "
    "the final enhanced image."
)


def parse_args(argv: Iterable[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Enhance product images with the Google GenAI SDK and write a manifest.",
    )
    add_batch_arguments(parser)
    parser.add_argument(
        "--api-key",
        default=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"),
        help="Gemini API key. Defaults from env GEMINI_API_KEY or GOOGLE_API_KEY.",
    )
    parser.add_argument(
        "--model",
        default=DEFAULT_MODEL,
        help=f"Image model name (default: {DEFAULT_MODEL}).",
    )
    parser.add_argument(
        "--prompt",
        default=DEFAULT_PROMPT,
        help="Prompt sent with each product image.",
    )
    args = parser.parse_args(list(argv))
    validate_batch_arguments(parser, args)
    return args


def build_contents(prompt: str, source_bytes: bytes, source_mime: Optional[str], background: Optional[bytes]) -> List[Any]:
    contents: List[Any] = [
        prompt,
        types.Part.from_bytes(data=source_bytes, mime_type=source_mime or "image/jpeg"),
    ]
    if background is not None:
        contents.append(types.Part.from_bytes(data=background, mime_type="image/png"))
    return contents


def extract_image_from_response(response: Any) -> bytes:
    candidates = getattr(response, "candidates", None) or []
    content = getattr(candidates[0], "content", None) if candidates else None
    for part in getattr(content, "parts", None) or []:
        inline_data = getattr(part, "inline_data", None)
        data = getattr(inline_data, "data", None)
        if not data:
            continue
        if isinstance(data, str):
            return base64.b64decode(data)
        return bytes(data)
    raise ImageNotFoundError("Gemini did not return an image")


def enhance_with_gemini(
    client: genai.Client,
    model: str,
    prompt: str,
    job: EnhanceJob,
    background: Optional[bytes],
) -> bytes:
    logging.debug("Calling Gemini generate_content (model=%s) for %s", model, job.item.base_name)
    response = client.models.generate_content(
        model=model,
        contents=build_contents(prompt, job.source_bytes, job.source_mime, background),
        config=types.GenerateContentConfig(
            response_modalities=[types.Modality.IMAGE, types.Modality.TEXT],
        ),
    )
    return extract_image_from_response(response)


def main(argv: Iterable[str]) -> int:
    load_env()
    args = parse_args(argv)
    configure_logging(args.verbose)

    if not args.input.is_file():
        logging.error("Input file does not exist: %s", args.input)
        return 2
    if not args.api_key:
        logging.error("API key is required. Use --api-key or env GEMINI_API_KEY/GOOGLE_API_KEY.")
        return 2

    background = load_background(args.background)
    gemini = genai.Client(api_key=args.api_key)

    def enhancer(job: EnhanceJob) -> bytes:
        return enhance_with_gemini(gemini, args.model, args.prompt, job, background)

    logging.info("Input file: %s", args.input)
    logging.info("Model: %s", args.model)
    with httpx.Client() as client:
        report = run_batch(
            input_path=args.input,
            working_dir=args.working_dir,
            final_dir=args.final_dir,
            enhancer=enhancer,
            client=client,
            label=LABEL,
            limit=args.limit,
            timeout_seconds=args.timeout_seconds,
            jpeg_quality=args.jpeg_quality,
            keep_format=args.keep_format,
        )
    log_summary(report)
    return 0


def cli() -> None:
    sys.exit(main(sys.argv[1:]))


if __name__ == "__main__":
    cli()
