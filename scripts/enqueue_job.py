"""
Push a classification job onto the worker queue, the same way the catalog
app does after an upload.

    python scripts/enqueue_job.py 42 /uploads/42.jpg
"""
import argparse
import sys

from dotenv import load_dotenv

from image2taxonomy.exception import CustomException
from image2taxonomy.integration.redis_queue import RedisQueue
from image2taxonomy.logger import get_logger
from image2taxonomy.utils.load_config import load_settings

load_dotenv()

logger = get_logger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Enqueue a product image for classification.")
    parser.add_argument("record_id", type=int, help="products.id of the row to update")
    parser.add_argument("image_path", help="Image path as seen by the worker")
    args = parser.parse_args()

    try:
        settings = load_settings()
        queue = RedisQueue(settings.queue.url, settings.queue.name)
        jid = queue.enqueue(args.record_id, args.image_path, settings.queue.job_class)
    except CustomException as e:
        logger.error(f"Failed to enqueue job: {e}")
        print(f"ERROR: {e}")
        sys.exit(1)

    print(f"Enqueued job {jid} ({queue.size()} waiting on {queue.name})")


if __name__ == "__main__":
    main()
