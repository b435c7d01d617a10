from __future__ import annotations

import argparse


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="lab-extractor",
        description="Poll pending OCR records and extract structured lab reports",
    )

    p.add_argument(
        "--batch-size",
        type=int,
        default=0,
        help="Override LAB_BATCH_SIZE (records claimed per cycle)",
    )
    p.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    p.add_argument(
        "--initial-delay-ms",
        type=int,
        default=None,
        help="Override LAB_INITIAL_DELAY_MS (wait before the first cycle)",
    )
    p.add_argument("--log-level", default="INFO", help="Python logging level (INFO, DEBUG, ...)")
    return p
