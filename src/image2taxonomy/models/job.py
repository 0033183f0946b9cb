import json
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from image2taxonomy.logger import get_logger

logger = get_logger(__name__)

DEFAULT_JOB_KIND = "ProductAnalysisJob"


class QueueEntry(BaseModel):
    """
    Wire form of a queue entry (Sidekiq job hash). Unknown keys are kept so
    entries written by other producers round-trip unchanged.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    job_class: str = Field("", alias="class")
    args: List[Any] = Field(default_factory=list)
    jid: Optional[str] = None


class ClassificationJob(BaseModel):
    model_config = ConfigDict(frozen=True)

    record_id: int
    image_path: str
    job_kind: str = DEFAULT_JOB_KIND
    jid: Optional[str] = None


def decode_job(payload: str, expected_kind: str = DEFAULT_JOB_KIND) -> Optional[ClassificationJob]:
    """
    Decode a raw queue payload into a ClassificationJob.

    Returns None for entries this worker does not handle: undecodable
    payloads, other job classes, too few arguments, or arguments of the
    wrong type.
    """
    try:
        entry = QueueEntry.model_validate(json.loads(payload))
    except (ValueError, TypeError, ValidationError) as e:
        logger.warning(f"Dropping undecodable queue entry: {e}")
        return None

    if entry.job_class != expected_kind:
        logger.debug(f"Ignoring job of class '{entry.job_class}'")
        return None

    if len(entry.args) < 2:
        logger.warning(f"Invalid job args: expected 2, got {len(entry.args)} (jid={entry.jid})")
        return None

    raw_id, image_path = entry.args[0], entry.args[1]

    # JSON numbers may arrive as floats; bools are ints in Python but not ids.
    if isinstance(raw_id, bool) or not isinstance(raw_id, (int, float)):
        logger.warning(f"Invalid record id {raw_id!r} (jid={entry.jid})")
        return None
    if isinstance(raw_id, float) and not raw_id.is_integer():
        logger.warning(f"Invalid record id {raw_id!r} (jid={entry.jid})")
        return None
    if not isinstance(image_path, str) or not image_path:
        logger.warning(f"Invalid image path {image_path!r} (jid={entry.jid})")
        return None

    return ClassificationJob(
        record_id=int(raw_id),
        image_path=image_path,
        job_kind=entry.job_class,
        jid=entry.jid,
    )
