import base64

from pydantic import BaseModel, Field


class PreparedImage(BaseModel):
    """Image bytes ready to be embedded in an inference request."""

    data: bytes = Field(..., repr=False)
    mime_type: str
    width: int
    height: int
    resized: bool = False

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"
