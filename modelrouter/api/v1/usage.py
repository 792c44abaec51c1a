"""Usage ingestion endpoint — clients report each completed model call."""

from fastapi import APIRouter, HTTPException, status

from modelrouter.api.deps import ClientAuth, Session
from modelrouter.core.errors import StoreError
from modelrouter.models.usage_bucket import UsageEventCreate, UsageTrackResponse
from modelrouter.services.usage import record_usage

router = APIRouter(prefix="/usage", tags=["usage"])


@router.post(
    "",
    response_model=UsageTrackResponse,
    summary="Track one model call",
)
async def track_usage(
    body: UsageEventCreate,
    auth: ClientAuth,
    session: Session,
) -> UsageTrackResponse:
    """Fold the call into hourly stats, registry health and experiment stats.

    Calls for models missing from the registry are still counted, without cost.
    """
    try:
        outcome = await record_usage(session, body)
    except StoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Failed to track usage: {exc}",
        ) from exc

    return UsageTrackResponse(
        ok=True,
        project_name=body.project_name,
        model_id=body.model_id,
        cost_usd=round(outcome.cost_usd, 6) if outcome.cost_usd is not None else None,
        total_tokens=body.input_tokens + body.output_tokens,
        warning=outcome.warning,
    )
