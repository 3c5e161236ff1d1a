from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path
from starlette import status

from couchpenter.models.couchpenter import (
    CommandInfo,
    CommandListResponse,
    CommandRequest,
    CommandResponse,
)
from couchpenter.services.couchpenter_service import COMMANDS, CouchpenterService
from couchpenter.services.dependencies import get_couchpenter_service

router = APIRouter(prefix="/commands", tags=["commands"])


@router.get("", response_model=CommandListResponse)
async def list_commands() -> CommandListResponse:
    commands = [CommandInfo(command=name, tasks=list(tasks)) for name, tasks in COMMANDS.items()]
    return CommandListResponse(count=len(commands), commands=commands)


@router.post("/{command}", response_model=CommandResponse)
async def run_command(
    command: str = Path(..., description="Command name, e.g. setUp"),
    request: Optional[CommandRequest] = Body(default=None),
    couchpenter: CouchpenterService = Depends(get_couchpenter_service),
) -> CommandResponse:
    if command not in COMMANDS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown command: {command}")

    if request is not None and request.prefix is not None:
        couchpenter = couchpenter.with_prefix(request.prefix)

    results = await couchpenter.run_command(command)
    return CommandResponse(command=command, tasks=list(COMMANDS[command]), results=results)
