import threading
import time
from enum import Enum
from typing import Optional

from image2taxonomy.agents.parser import build_result
from image2taxonomy.exception import (
    InferenceError,
    OutputValidationError,
    QueueTransportError,
    StoreError,
)
from image2taxonomy.logger import get_logger
from image2taxonomy.models import (
    DEFAULT_JOB_KIND,
    ClassificationJob,
    ClassificationResult,
    ProcessingStatus,
    decode_job,
)

logger = get_logger(__name__)


class JobState(str, Enum):
    RECEIVED = "received"
    CLASSIFYING = "classifying"
    VALIDATING = "validating"
    COMPLETE = "complete"
    FAILED = "failed"


class JobProcessor:
    """
    Sequential worker loop:
    1. Blocking pop of one queue entry
    2. Decode into a ClassificationJob (foreign or malformed entries are skipped)
    3. Classify the image with the inference engine
    4. Validate and clean the engine output
    5. Persist exactly one terminal status (complete / failed)

    Per-job failures are recorded on the product row and never stop the loop.
    """

    def __init__(
        self,
        queue,
        engine,
        store,
        job_kind: str = DEFAULT_JOB_KIND,
        retry_delay: float = 1.0,
        vertical_root: Optional[str] = None,
        sleep=time.sleep,
    ):
        self.queue = queue
        self.engine = engine
        self.store = store
        self.job_kind = job_kind
        self.retry_delay = retry_delay
        self.vertical_root = vertical_root
        self._sleep = sleep

        logger.info(f"JobProcessor initialized for job class '{job_kind}'.")

    # ------------------------------------------------------------------
    # LOOP
    # ------------------------------------------------------------------
    def run(self, stop_event: Optional[threading.Event] = None):
        """
        Process jobs until stop_event is set (forever when None).
        """
        logger.info(f"Worker listening on {getattr(self.queue, 'name', 'queue')}")
        while stop_event is None or not stop_event.is_set():
            try:
                payload = self.queue.pop()
            except QueueTransportError as e:
                logger.error(f"{e}; retrying in {self.retry_delay:g}s")
                self._sleep(self.retry_delay)
                continue

            if payload is None:
                continue
            self.process_payload(payload)

        logger.info("Worker loop stopped.")

    def process_payload(self, payload: str) -> Optional[ClassificationResult]:
        """Decode one raw entry and process it. Returns None when it is not ours."""
        job = decode_job(payload, self.job_kind)
        if job is None:
            return None
        return self.process_job(job)

    # ------------------------------------------------------------------
    # ONE JOB
    # ------------------------------------------------------------------
    def process_job(self, job: ClassificationJob) -> ClassificationResult:
        """
        Drive one job to a terminal state and persist it.
        """
        state = JobState.RECEIVED
        logger.info(f"Processing Product ID: {job.record_id} | Image: {job.image_path}")

        try:
            state = JobState.CLASSIFYING
            self._persist(job, ProcessingStatus.PROCESSING, None)
            raw = self.engine.classify(job.image_path)
            logger.info(f"AI Result (raw): {raw}")

            state = JobState.VALIDATING
            result = build_result(raw, self.vertical_root)
            logger.info(f"AI Result (cleaned): {result.to_json()}")

        except InferenceError as e:
            logger.error(f"AI Failure for product {job.record_id}: {e}")
            return self._fail(job, state, str(e))
        except OutputValidationError as e:
            logger.error(f"JSON cleaning failed for product {job.record_id}: {e}")
            return self._fail(job, state, str(e))
        except Exception as e:
            logger.exception(f"Unexpected error while {state.value} product {job.record_id}")
            return self._fail(job, state, f"unexpected error: {e}")

        self._persist(job, ProcessingStatus.COMPLETE, result)
        logger.info(f"Product {job.record_id}: {state.value} -> {JobState.COMPLETE.value}")
        return result

    def _fail(self, job: ClassificationJob, state: JobState, message: str) -> ClassificationResult:
        result = ClassificationResult.failure(message)
        self._persist(job, ProcessingStatus.FAILED, result)
        logger.info(f"Product {job.record_id}: {state.value} -> {JobState.FAILED.value}")
        return result

    def _persist(self, job: ClassificationJob, status: ProcessingStatus, result: Optional[ClassificationResult]):
        try:
            self.store.update_status(job.record_id, status, result)
        except StoreError as e:
            logger.error(f"DB Update Failed: {e}")
