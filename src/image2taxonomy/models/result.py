import json
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"


class ProductEnvelope(BaseModel):
    """
    The exact JSON object the grammar makes the model emit.
    """
    model_config = ConfigDict(extra="forbid", strict=True)

    title: str = Field(..., description="Specific product name of the main item")
    description: str = Field(..., description="Visual details: colors, materials, design, branding")
    taxonomy: str = Field(..., description="Category path, e.g. 'Apparel & Accessories > Clothing'")


class ClassificationResult(BaseModel):
    """
    Outcome written to a product row. Absent fields leave the existing
    column value untouched.
    """
    title: Optional[str] = None
    description: Optional[str] = None
    taxonomy: Optional[str] = Field(None, description="Taxonomy path")
    violations: Optional[List[str]] = None
    error_message: Optional[str] = None

    @model_validator(mode="after")
    def _success_xor_error(self):
        has_success = any(
            value is not None for value in (self.title, self.description, self.taxonomy, self.violations)
        )
        if self.error_message is not None and has_success:
            raise ValueError("A failed result cannot carry classification fields")
        if self.error_message is None and not has_success:
            raise ValueError("A result needs classification fields or an error_message")
        return self

    @classmethod
    def failure(cls, message: str) -> "ClassificationResult":
        return cls(error_message=message)

    @property
    def is_failure(self) -> bool:
        return self.error_message is not None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)

    def to_json(self) -> str:
        return json.dumps(self.to_payload(), separators=(",", ":"), ensure_ascii=False)
