"""API routes for free-text investigations."""
import asyncio
from typing import Any, Dict, List

from fastapi import APIRouter, Request
from fastapi.exceptions import RequestValidationError as RequestBodyError
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.responses import JSONResponse

from freightlens.core.errors import RequestValidationError
from freightlens.core.logging import logger
from freightlens.models.investigation import InvestigateRequest, InvestigateResponse
from freightlens.services.orchestrator import investigation_orchestrator

router = APIRouter(prefix="/investigate", tags=["investigate"])

DISCONNECT_POLL_SECONDS = 0.5


def _invalid_fields(exc: RequestBodyError) -> List[str]:
    fields = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        fields.append(".".join(location) or "body")
    return list(dict.fromkeys(fields))


async def invalid_request_handler(request: Request, exc: RequestBodyError) -> JSONResponse:
    """Malformed investigate payloads get the fallback body instead of the raw validation detail."""
    if request.url.path.rstrip("/") != router.prefix:
        return await request_validation_exception_handler(request, exc)
    fields = _invalid_fields(exc)
    logger.info("Investigation request rejected", invalid_fields=fields)
    body = investigation_orchestrator.failure_response(f"Invalid field(s): {', '.join(fields)}")
    return JSONResponse(status_code=400, content=body.model_dump(mode="json", by_alias=True))


async def _watch_disconnect(request: Request, cancel: asyncio.Event) -> None:
    while not cancel.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected; cancelling investigation")
            cancel.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@router.post("", response_model=InvestigateResponse, response_model_by_alias=True)
async def investigate(payload: InvestigateRequest, request: Request):
    """Answer a free-text question about the customer's shipments."""
    try:
        question = payload.to_question()
    except RequestValidationError as exc:
        logger.info("Investigation request rejected", error=str(exc))
        body = investigation_orchestrator.failure_response(str(exc))
        return JSONResponse(status_code=400, content=body.model_dump(mode="json", by_alias=True))

    cancel = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel))
    try:
        return await investigation_orchestrator.investigate(question, cancel=cancel)
    except Exception as exc:
        logger.error("Investigation endpoint failed", tenant_id=question.tenant_id, error=str(exc))
        body = investigation_orchestrator.failure_response("internal error")
        return JSONResponse(status_code=500, content=body.model_dump(mode="json", by_alias=True))
    finally:
        watcher.cancel()


@router.get("/tools")
async def list_tools() -> List[Dict[str, Any]]:
    """Tool catalog exactly as offered to the reasoning service."""
    return investigation_orchestrator.tool_catalog()
