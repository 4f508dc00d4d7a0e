from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from promptgraph.api.schemas import HealthResponse
from promptgraph.logging import get_logger
from promptgraph.service.context_store import (
    ContextRequest,
    ContextResponse,
    ContextStore,
)
from promptgraph.service.errors import ValidationError

logger = get_logger(__name__)

router = APIRouter()


def get_context_store(request: Request) -> ContextStore:
    return request.app.state.context_store


def _context_json(response: ContextResponse) -> JSONResponse:
    return JSONResponse(
        status_code=200 if response.success else 400,
        content=response.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse()


@router.post("/context")
async def handle_context(
    payload: Dict[str, Any] = Body(...),
    store: ContextStore = Depends(get_context_store),
) -> JSONResponse:
    if not payload.get("userId") or not payload.get("action"):
        return _context_json(
            ContextResponse(
                success=False,
                message="Missing required fields: userId and action",
            )
        )
    try:
        context_request = ContextRequest.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(
            "invalid context request",
            detail={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc

    response = store.handle_request(context_request)
    logger.info(
        "context_request_handled",
        action=context_request.action,
        success=response.success,
    )
    return _context_json(response)
