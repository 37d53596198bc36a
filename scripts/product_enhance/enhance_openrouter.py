#!/usr/bin/env python3
"""Enhance product photos through OpenRouter's chat-completions endpoint.

Usage:
    python scripts/product_enhance/enhance_openrouter.py [--limit N] [--verbose]

The source image is referenced by its remote `imageUrl`; the optional
background goes inline as a PNG data URL. Models behind OpenRouter return the
generated image in several envelope shapes, see
`extract_image_bytes_from_response`.
"""

from __future__ import annotations

import argparse
import base64
import logging
import os
import sys
from typing import Any, Callable, Dict, Iterable, List, Optional

import httpx

from enhance_common import (
    ApiHttpError,
    EnhanceJob,
    ImageNotFoundError,
    add_batch_arguments,
    configure_logging,
    decode_data_url,
    fetch_image_bytes,
    load_background,
    load_env,
    log_summary,
    run_batch,
    validate_batch_arguments,
)

DEFAULT_ENDPOINT = "https://openrouter.ai/api/v1/chat/completions"
DEFAULT_MODEL = "google/gemini-2.5-flash-image-preview"
DEFAULT_SITE_URL = "https://localhost"
DEFAULT_SITE_NAME = "banosser"
LABEL = "OpenRouter"

DEFAULT_PROMPT = (
    "Place the provided fragrance bottle into a professional studio shot on a clean solid background "
    "(white or light neutral), with soft diffused, even lighting, realistic reflections and gentle shadows. "
    "Keep original product, label and shape unchanged. Remove noise, glare, harsh shadows, distracting "
    "elements. Ensure the final image is a widescreen 16:9 product image, with the product centered. Do NOT "
    "stretch or distort the product; extend the background canvas to maintain 16:9. Return only the final "
    "enhanced image."
)

ImageFetcher = Callable[[str], bytes]


def parse_args(argv: Iterable[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Enhance product images through OpenRouter and write a manifest.",
    )
    add_batch_arguments(parser)
    parser.add_argument(
        "--api-key",
        default=os.getenv("OPENROUTER_API_KEY"),
        help="OpenRouter API key. Defaults from env OPENROUTER_API_KEY.",
    )
    parser.add_argument(
        "--model",
        default=DEFAULT_MODEL,
        help=f"Model name (default: {DEFAULT_MODEL}).",
    )
    parser.add_argument(
        "--endpoint",
        default=DEFAULT_ENDPOINT,
        help=f"Chat-completions endpoint (default: {DEFAULT_ENDPOINT}).",
    )
    parser.add_argument(
        "--site-url",
        default=os.getenv("OPENROUTER_SITE_URL") or DEFAULT_SITE_URL,
        help="Value of the HTTP-Referer header. Defaults from env OPENROUTER_SITE_URL.",
    )
    parser.add_argument(
        "--site-name",
        default=os.getenv("OPENROUTER_SITE_NAME") or DEFAULT_SITE_NAME,
        help="Value of the X-Title header. Defaults from env OPENROUTER_SITE_NAME.",
    )
    parser.add_argument(
        "--prompt",
        default=DEFAULT_PROMPT,
        help="Prompt sent with each product image.",
    )
    args = parser.parse_args(list(argv))
    validate_batch_arguments(parser, args)
    return args


def to_png_data_url(png_bytes: bytes) -> str:
    return f"data:image/png;base64,{base64.b64encode(png_bytes).decode('ascii')}"


def build_headers(api_key: str, site_url: str, site_name: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "HTTP-Referer": site_url,
        "X-Title": site_name,
        "Content-Type": "application/json",
    }


def build_request_payload(
    model: str,
    prompt: str,
    image_url: str,
    background_data_url: Optional[str],
) -> Dict[str, Any]:
    content: List[Dict[str, Any]] = [
        {"type": "text", "text": prompt},
        {"type": "image_url", "image_url": {"url": image_url}},
    ]
    if background_data_url:
        content.append({"type": "image_url", "image_url": {"url": background_data_url}})
    return {
        "model": model,
        "messages": [{"role": "user", "content": content}],
        "modalities": ["image", "text"],
    }


def _image_url_of(entry: Dict[str, Any]) -> Optional[str]:
    value = entry.get("image_url")
    if isinstance(value, dict):
        value = value.get("url")
    return value if isinstance(value, str) and value else None


def _bytes_from_url(url: str, fetch: ImageFetcher) -> bytes:
    inline = decode_data_url(url)
    if inline is not None:
        return inline
    return fetch(url)


def extract_image_bytes_from_response(payload: Dict[str, Any], fetch: ImageFetcher) -> bytes:
    choices = payload.get("choices") if isinstance(payload, dict) else None
    choice = choices[0] if isinstance(choices, list) and choices else None
    message = choice.get("message") if isinstance(choice, dict) else None
    if not isinstance(message, dict):
        message = {}
    content = message.get("content")

    # Documented shape: message.images[] with data URLs.
    images = message.get("images")
    if isinstance(images, list):
        for img in images:
            if isinstance(img, dict) and img.get("type") == "image_url":
                url = _image_url_of(img)
                if url:
                    return _bytes_from_url(url, fetch)
            inline = decode_data_url(img)
            if inline is not None:
                return inline

    if isinstance(content, list):
        for part in content:
            if not isinstance(part, dict):
                continue
            kind = part.get("type")
            if kind == "output_image":
                data = part.get("data")
                b64 = (
                    part.get("image_base64")
                    or part.get("b64_json")
                    or part.get("base64")
                    or (data if isinstance(data, str) else None)
                )
                if isinstance(b64, str) and b64:
                    inline = decode_data_url(b64)
                    return inline if inline is not None else base64.b64decode(b64)
            if kind == "image_url":
                url = _image_url_of(part)
                if url:
                    return _bytes_from_url(url, fetch)
            if kind == "text":
                inline = decode_data_url(part.get("text"))
                if inline is not None:
                    return inline

    inline = decode_data_url(content)
    if inline is not None:
        return inline

    raise ImageNotFoundError("OpenRouter response did not include an image")


def call_openrouter(
    client: httpx.Client,
    endpoint: str,
    headers: Dict[str, str],
    payload: Dict[str, Any],
    timeout_seconds: float,
) -> bytes:
    response = client.post(
        endpoint,
        headers=headers,
        json=payload,
        timeout=httpx.Timeout(timeout_seconds),
    )
    if not response.is_success:
        raise ApiHttpError(
            status=response.status_code,
            raw_text=response.text,
            message=f"OpenRouter error: {response.status_code} {response.reason_phrase} - {response.text}",
        )

    def fetch(url: str) -> bytes:
        return fetch_image_bytes(client, url, timeout_seconds)

    return extract_image_bytes_from_response(response.json(), fetch)


def main(argv: Iterable[str]) -> int:
    load_env()
    args = parse_args(argv)
    configure_logging(args.verbose)

    if not args.input.is_file():
        logging.error("Input file does not exist: %s", args.input)
        return 2
    if not args.api_key:
        logging.error("Missing OPENROUTER_API_KEY env var (or --api-key).")
        return 2

    background = load_background(args.background)
    background_data_url = to_png_data_url(background) if background is not None else None
    headers = build_headers(args.api_key, args.site_url, args.site_name)

    logging.info("Input file: %s", args.input)
    logging.info("Model: %s via %s", args.model, args.endpoint)
    with httpx.Client() as client:

        def enhancer(job: EnhanceJob) -> bytes:
            payload = build_request_payload(args.model, args.prompt, job.source_url, background_data_url)
            return call_openrouter(client, args.endpoint, headers, payload, args.timeout_seconds)

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
