from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset([JobStatus.COMPLETED, JobStatus.FAILED])


class Job(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    style_name: str
    status: JobStatus
    created_at: datetime
    image_url: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class GenerateToonRequest(BaseModel):
    # Fields are loose here so missing ones surface as a 400, not a 422.
    image_data_url: Optional[Any] = Field(default=None, alias="imageDataUrl")
    style_prompt: Optional[Any] = Field(default=None, alias="stylePrompt")
    user_id: Optional[Any] = Field(default=None, alias="userId")

    def missing_fields(self) -> list[str]:
        missing = []
        for alias, value in (
            ("imageDataUrl", self.image_data_url),
            ("stylePrompt", self.style_prompt),
            ("userId", self.user_id),
        ):
            if not isinstance(value, str) or not value:
                missing.append(alias)
        return missing
