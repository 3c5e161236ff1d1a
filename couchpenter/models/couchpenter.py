from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class OperationResult(BaseModel):
    id: str = Field(..., description="Database name, or database/document id")
    message: str
    rev: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.id} - {self.message}"


class CommandInfo(BaseModel):
    command: str
    tasks: list[str]


class CommandListResponse(BaseModel):
    count: int
    commands: list[CommandInfo]


class CommandRequest(BaseModel):
    prefix: Optional[str] = None


class CommandResponse(BaseModel):
    command: str
    tasks: list[str]
    results: list[OperationResult]


class TaskFailedResponse(BaseModel):
    detail: str
    task: str
    index: int
    completed: list[OperationResult]
