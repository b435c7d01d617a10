from __future__ import annotations

import asyncio
import dataclasses
import logging
import signal

from labreport_service.db import close_pool, get_pool
from labreport_service.logging_config import setup_logging
from labreport_service.pipeline.wiring import build_pipeline
from labreport_service.worker.cli import build_parser
from labreport_service.worker.config import WorkerConfig


async def _amain(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(level=args.log_level.upper())
    logger = logging.getLogger("labreport_service.worker")

    cfg = WorkerConfig.from_env()

    # CLI overrides
    overrides: dict[str, int] = {}
    if args.batch_size and args.batch_size > 0:
        overrides["batch_size"] = args.batch_size
    if args.initial_delay_ms is not None:
        overrides["initial_delay_ms"] = args.initial_delay_ms
    cfg = dataclasses.replace(cfg, **overrides)
    cfg.validate()

    await get_pool()
    pipeline = build_pipeline(cfg)

    try:
        if args.once:
            await pipeline.store.restore_stale(cfg.stale_claim_seconds)
            result = await pipeline.guarded.run_cycle()
            logger.info("Single cycle finished: %s", result)
            return 0

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        pipeline.scheduler.start()
        logger.info("Lab extractor polling with batch_size=%d", cfg.batch_size)
        await stop.wait()
        logger.info("Shutdown requested; finishing current cycle")
        await pipeline.scheduler.stop()
        return 0
    finally:
        await pipeline.guarded.drain(timeout=60)
        await close_pool()


def main() -> None:
    raise SystemExit(asyncio.run(_amain()))


if __name__ == "__main__":
    main()
