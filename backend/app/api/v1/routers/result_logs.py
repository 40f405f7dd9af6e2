"""API routes for prompt result logs.

- GET /api/v1/prompts/{prompt_id}/result-logs - Logs and per-type summary
- POST /api/v1/prompts/{prompt_id}/result-logs - Report an outcome
"""

import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db, get_notifier, to_http_exception
from app.core.exceptions import MarketplaceError
from app.models.user import User
from app.schemas.result_log import (
    MetricSummary,
    ResultLogCreate,
    ResultLogCreateResponse,
    ResultLogListResponse,
    ResultLogResponse,
)
from app.services.notification_service import Notifier
from app.services.result_log_service import get_result_log_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/prompts/{prompt_id}/result-logs", tags=["result-logs"])


@router.get("", response_model=ResultLogListResponse, summary="List result logs")
async def list_result_logs(
    prompt_id: int,
    limit: int = Query(default=50, ge=1, le=200),
    include_flagged: bool = Query(default=False),
    db: AsyncSession = Depends(get_db),
) -> ResultLogListResponse:
    """Result logs for a prompt.

    Flagged logs are hidden unless ``include_flagged`` is set; the summary
    never includes them.
    """
    service = get_result_log_service(db)
    logs, summary = await service.list_result_logs(
        prompt_id, limit=limit, include_flagged=include_flagged
    )
    return ResultLogListResponse(
        result_logs=[ResultLogResponse.model_validate(log) for log in logs],
        summary={k: MetricSummary(**v) for k, v in summary.items()},
    )


@router.post(
    "",
    response_model=ResultLogCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Report a result",
)
async def create_result_log(
    prompt_id: int,
    request: ResultLogCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> ResultLogCreateResponse:
    """Report an outcome for a prompt.

    Raises:
        HTTPException(400): Value outside the accepted bounds
        HTTPException(403): Prompt not purchased
        HTTPException(404): Prompt not found
    """
    service = get_result_log_service(db, notifier=notifier)
    try:
        outcome = await service.create_result_log(
            current_user.id,
            prompt_id,
            request.metric_type,
            request.metric_value,
            request.metric_unit,
            request.note,
        )
    except MarketplaceError as e:
        raise to_http_exception(e)

    return ResultLogCreateResponse(
        result_log=ResultLogResponse.model_validate(outcome.result_log),
        flagged=outcome.flagged,
        message=outcome.message,
    )
