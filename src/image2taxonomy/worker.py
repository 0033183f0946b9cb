"""
worker.py

Process entry point:
    1. Load settings (config.yaml + .env)
    2. Start the llama-server supervisor
    3. Consume classification jobs from Redis until SIGTERM / Ctrl-C
    4. Stop the inference engine
"""

import argparse
import signal
import sys
from typing import List, Optional

from image2taxonomy.agents.job_processor import JobProcessor
from image2taxonomy.dbs.products_db import ProductsDB
from image2taxonomy.exception import ConfigurationError, EngineStartupError
from image2taxonomy.integration.redis_queue import RedisQueue
from image2taxonomy.llm import LlamaServerSupervisor
from image2taxonomy.logger import get_logger
from image2taxonomy.utils.load_config import load_settings

logger = get_logger(__name__)


def _raise_system_exit(signum, frame):
    logger.info(f"Received signal {signum}, shutting down...")
    raise SystemExit(0)


def run_worker(mode: Optional[str] = None, config_path: Optional[str] = None) -> int:
    """
    Run the worker until interrupted. Returns a process exit code.
    """
    try:
        settings = load_settings(mode=mode, config_path=config_path)
    except ConfigurationError as e:
        logger.error(f"Failed to load config: {e}")
        return 1

    try:
        store = ProductsDB(settings.database_url)
        queue = RedisQueue(settings.queue.url, settings.queue.name)

        with LlamaServerSupervisor(settings.engine) as engine:
            processor = JobProcessor(
                queue=queue,
                engine=engine,
                store=store,
                job_kind=settings.queue.job_class,
                retry_delay=settings.queue.retry_delay,
                vertical_root=settings.taxonomy.vertical,
            )
            processor.run()
    except (ConfigurationError, EngineStartupError) as e:
        logger.error(f"Worker failed to start: {e}")
        return 1
    except (KeyboardInterrupt, SystemExit):
        logger.info("Worker stopped.")
        return 0

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Classify product images from the Redis job queue.")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--docker", dest="mode", action="store_const", const="docker", help="Use docker acceleration settings")
    group.add_argument("--local", dest="mode", action="store_const", const="local", help="Use local acceleration settings")
    parser.add_argument("--config", default=None, help="Path to config.yaml (default: search upwards from cwd)")
    args = parser.parse_args(argv)

    signal.signal(signal.SIGTERM, _raise_system_exit)
    return run_worker(mode=args.mode, config_path=args.config)


if __name__ == "__main__":
    sys.exit(main())
