import json
from typing import List, Optional

from pydantic import ValidationError

from image2taxonomy.exception import OutputValidationError
from image2taxonomy.grammar.compiler import PATH_SEPARATOR
from image2taxonomy.logger import get_logger
from image2taxonomy.models import ClassificationResult, ProductEnvelope

logger = get_logger(__name__)


def clean_output(raw: str) -> ProductEnvelope:
    """
    Parse engine output strictly as the three-field JSON envelope.

    The grammar should make this infallible, but a truncated generation or
    a mismatched grammar artifact can still produce broken text.
    """
    text = (raw or "").strip()
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise OutputValidationError(f"JSON parsing error: invalid JSON: {exc}")

    if not isinstance(data, dict):
        raise OutputValidationError(f"JSON parsing error: expected an object, got {type(data).__name__}")

    try:
        return ProductEnvelope.model_validate(data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'envelope'}: {err['msg']}" for err in exc.errors()
        )
        raise OutputValidationError(f"JSON parsing error: {problems}")


def collect_violations(envelope: ProductEnvelope, vertical_root: Optional[str] = None) -> List[str]:
    """
    Non-fatal quality findings recorded next to a successful classification.
    """
    violations = []
    if not envelope.title.strip():
        violations.append("title is empty")
    if not envelope.description.strip():
        violations.append("description is empty")

    if vertical_root:
        path = envelope.taxonomy
        if path == vertical_root:
            violations.append(f"taxonomy stops at the vertical root '{vertical_root}'")
        elif not path.startswith(vertical_root + PATH_SEPARATOR):
            violations.append(f"taxonomy does not start with '{vertical_root}'")

    return violations


def build_result(raw: str, vertical_root: Optional[str] = None) -> ClassificationResult:
    """
    Clean and validate raw engine output into a ClassificationResult.

    Raises OutputValidationError when the output is not the envelope.
    """
    envelope = clean_output(raw)
    violations = collect_violations(envelope, vertical_root)
    if violations:
        logger.warning(f"Classification has {len(violations)} violation(s): {violations}")

    return ClassificationResult(
        title=envelope.title,
        description=envelope.description,
        taxonomy=envelope.taxonomy,
        violations=violations or None,
    )
