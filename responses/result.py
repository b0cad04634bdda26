from pydantic import BaseModel, Field
from typing import Dict, Optional

TERMINAL_STATUSES = {"completed", "failed"}


class Result(BaseModel):
    id: str
    message: str = Field(default='Request accepted')
    status: str = Field(default='pending')
    provider: Optional[str] = Field(default=None)
    task_id: Optional[str] = Field(default=None, description="Remote queue task id, for queued providers")
    error: Optional[str] = Field(default=None, description="Exception type of a failed generation")
    image: Optional[str] = Field(default=None, exclude=True, description="Base64 payload handed from generation to postprocess")
    output: list = Field(default=[])
    timings: Dict = Field(default={})
