from typing import List

from pydantic import BaseModel, Field


class ExecResult(BaseModel):
    """Captured output of a finished toolchain command"""
    command: List[str]
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    duration_ms: int = 0
    attempts: int = Field(default=1, description="How many times the command was started")
