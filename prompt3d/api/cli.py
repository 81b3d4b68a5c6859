"""
Command-line adapter for the prompt3d generation pipeline.

Architectural role:
- Terminal-only interface over `core.orchestrator.PipelineOrchestrator`.
- Prints progress events as they arrive and the final model reference.

Request lifecycle:
1. Parse `prompt` and optional `--image` (local file, http(s) URL or data URL).
2. Build the orchestrator from configuration (optionally overriding the
   provider order with `--providers`).
3. Run the pipeline, printing progress and the attempt history.

Error handling strategy:
- Missing prompt and image -> exit status 2 with a message.
- Unknown provider id or malformed numeric override -> exit status 2.
- Ctrl-C sets the cancel event and exits with status 130.

Side effects:
- Configures root logging from `LOG_LEVEL` (default WARNING).
- Reads local image files when `--image` points to one.
"""

from dotenv import load_dotenv

load_dotenv()

import argparse
import logging
import mimetypes
import os
import sys
import threading

from prompt3d.core.errors import GenerationCancelled, InvalidRequest
from prompt3d.core.orchestrator import PipelineOrchestrator
from prompt3d.core.types import GenerationRequest, ImageReference
from prompt3d.providers.registry import build_adapters


def load_image_argument(value):
    """Turn `--image` into an `ImageReference` (file path, URL or data URL)."""
    if not value:
        return None
    if value.startswith(("http://", "https://", "data:")):
        return ImageReference.from_url(value)

    media_type = mimetypes.guess_type(value)[0] or "image/png"
    with open(value, "rb") as f:
        return ImageReference.from_bytes(f.read(), media_type=media_type)


def print_progress(progress):
    label = progress.provider_id or "pipeline"
    print(f"[{progress.percent:5.1f}%] {label}: {progress.message}", flush=True)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="prompt3d",
        description="Generate a 3D model URL from a text prompt and/or image.",
    )
    parser.add_argument("prompt", nargs="?", default=None, help="Text prompt")
    parser.add_argument("--image", default=None, help="Input image path or URL")
    parser.add_argument(
        "--providers",
        default=None,
        help="Comma-separated provider priority overriding PROVIDER_ORDER",
    )
    parser.add_argument("--quiet", action="store_true", help="Only print the model reference")
    return parser


def main(argv=None):
    """
    Run one generation and print its result.

    Returns:
        Process exit status.
    """
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        image = load_image_argument(args.image)
    except OSError as err:
        print(f"Cannot read image: {err}", file=sys.stderr)
        return 2

    order = None
    if args.providers:
        order = [p.strip() for p in args.providers.split(",") if p.strip()]

    try:
        orchestrator = PipelineOrchestrator(adapters=build_adapters(order) if order is not None else None)
    except (KeyError, ValueError) as err:
        print(f"Invalid provider configuration: {err}", file=sys.stderr)
        return 2

    cancel_event = threading.Event()
    request = GenerationRequest(prompt=args.prompt, source_image=image)

    try:
        run = orchestrator.run(
            request,
            on_progress=None if args.quiet else print_progress,
            cancel_event=cancel_event,
        )
    except InvalidRequest as err:
        print(str(err), file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        cancel_event.set()
        print("\nInterrupted.", file=sys.stderr)
        return 130
    except GenerationCancelled:
        print("Cancelled.", file=sys.stderr)
        return 130

    if args.quiet:
        print(run.result.model_reference)
        return 0

    print("-" * 60)
    for attempt in run.attempts:
        detail = f" ({attempt.last_error})" if attempt.last_error else ""
        print(f"{attempt.provider_id:<20} {attempt.status.value}{detail}")
    if run.image_error:
        print(f"image synthesis: {run.image_error}")
    print("-" * 60)
    print(f"Model: {run.result.model_reference}")
    print(f"Produced by: {run.result.produced_by}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
