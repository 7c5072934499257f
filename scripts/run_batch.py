"""
Quick local batch helper: runs one job over a CSV file and writes the
recompressed images to a directory. This bypasses the API layer and keeps
the job record in memory.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path

# Ensure project root is importable when running from scripts/
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from image_batch_service.config import Settings
from image_batch_service.ingest import parse_csv_rows
from image_batch_service.runner import JobRunner


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Recompress every image referenced by a product CSV")
    parser.add_argument("--input", required=True, help="Path to the product CSV")
    parser.add_argument("--output-dir", default="uploads", help="Directory for recompressed images")
    parser.add_argument("--local-input-dir", default=".", help="Directory local image paths must live under")
    parser.add_argument("--format", default="JPEG", choices=["JPEG", "PNG", "WEBP"], help="Output encoding")
    parser.add_argument("--quality", type=int, default=50, help="Encoder quality 0-100")
    parser.add_argument("--max-dimension", type=int, default=None, help="Bound on the long edge")
    parser.add_argument("--concurrency", type=int, default=4, help="Products and images in flight")
    parser.add_argument("--webhook-url", default=None, help="Optional completion webhook")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> dict:
    settings = Settings(
        output_format=args.format,
        output_quality=args.quality,
        max_dimension=args.max_dimension,
        product_concurrency=args.concurrency,
        image_concurrency=args.concurrency,
        local_input_dir=Path(args.local_input_dir),
        local_output_dir=Path(args.output_dir),
        storage_backend="local",
        job_store_backend="memory",
        webhook_url=args.webhook_url,
    )
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    runner = JobRunner.from_settings(settings)

    rows = parse_csv_rows(Path(args.input).read_bytes())
    job_id = runner.id_generator()
    await runner.run(job_id, rows)
    return runner.store.get(job_id).payload()


def main() -> None:
    args = parse_args()
    input_path = Path(args.input)
    if not input_path.exists():
        raise FileNotFoundError(f"Input file not found: {input_path}")

    payload = asyncio.run(run(args))
    print(json.dumps(payload, indent=2))


if __name__ == "__main__":
    main()
