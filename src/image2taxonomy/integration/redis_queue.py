import json
import secrets
import time
from typing import Optional

import redis

from image2taxonomy.exception import QueueTransportError
from image2taxonomy.logger import get_logger
from image2taxonomy.models import DEFAULT_JOB_KIND

logger = get_logger(__name__)

DEFAULT_QUEUE = "queue:default"
FALLBACK_URL = "redis://localhost:6379/0"


class RedisQueue:
    """
    FIFO work queue on a Redis list, compatible with Sidekiq job payloads.

    Producers append with RPUSH, workers take from the head with BLPOP, so
    each entry is delivered to exactly one worker.
    """

    def __init__(self, url: str = FALLBACK_URL, name: str = DEFAULT_QUEUE, client: Optional[redis.Redis] = None):
        self.name = name
        self.client = client or self._connect(url)

    @staticmethod
    def _connect(url: str) -> redis.Redis:
        # Raw bytes; pop() does the decoding.
        try:
            return redis.Redis.from_url(url)
        except ValueError as e:
            logger.warning(f"Invalid Redis URL '{url}' ({e}); falling back to {FALLBACK_URL}")
            return redis.Redis.from_url(FALLBACK_URL)

    def pop(self, timeout: int = 0) -> Optional[str]:
        """
        Block until an entry is available and return its raw payload.

        timeout=0 waits forever; otherwise None is returned on timeout.
        Entries that are not valid UTF-8 are dropped and also give None.
        """
        try:
            item = self.client.blpop([self.name], timeout=timeout)
        except redis.RedisError as e:
            raise QueueTransportError(f"Redis error: {e}")

        if item is None:
            return None
        _, payload = item
        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as e:
                logger.warning(f"Dropping queue entry that is not valid UTF-8 ({e}): {payload[:64]!r}")
                return None
        return payload

    def enqueue(self, record_id: int, image_path: str, job_class: str = DEFAULT_JOB_KIND) -> str:
        """
        Append a job in Sidekiq's wire format. Returns the job id.
        """
        now = time.time()
        jid = secrets.token_hex(12)
        payload = {
            "class": job_class,
            "args": [record_id, image_path],
            "jid": jid,
            "queue": self.name.split(":", 1)[-1],
            "retry": True,
            "created_at": now,
            "enqueued_at": now,
        }
        try:
            self.client.rpush(self.name, json.dumps(payload))
        except redis.RedisError as e:
            raise QueueTransportError(f"Redis error: {e}")

        logger.info(f"Enqueued {job_class} for product {record_id} (jid={jid}) on {self.name}")
        return jid

    def size(self) -> int:
        try:
            return int(self.client.llen(self.name))
        except redis.RedisError as e:
            raise QueueTransportError(f"Redis error: {e}")
