from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class Status(str, Enum):
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"
    UNKNOWN = "unknown"


class DiagnosticResult(BaseModel):
    """Outcome of one doctor check"""
    name: str
    description: str
    status: Status = Status.UNKNOWN
    message: str = ""
    fix: Optional[str] = None

    def __str__(self):
        return f"{self.status.value}: {self.name} - {self.message}"


class FixReport(BaseModel):
    """What an auto-fix pass changed, and what it left to the user"""
    applied: List[str] = Field(default_factory=list)
    manual: List[str] = Field(default_factory=list)
    # the check results after the fixes, not part of the serialized report
    results: List[DiagnosticResult] = Field(default_factory=list, exclude=True)
