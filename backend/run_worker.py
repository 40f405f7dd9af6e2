#!/usr/bin/env python3
"""
Entrypoint for the PromptMarket background worker.

This script starts the ARQ worker that delivers notifications and runs the
pending-purchase reconciliation and revenue-release sweeps.
"""

import logging
import sys

from arq import run_worker

from app.workers.arq_tasks import WorkerSettings


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


def main() -> None:
    """Main entry point for worker service."""
    logger.info("Starting PromptMarket worker...")
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
