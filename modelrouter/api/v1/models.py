"""Model resolution endpoint — which model id should a caller use right now."""

from fastapi import APIRouter, HTTPException, Query, status

from modelrouter.api.deps import ClientAuth, Session
from modelrouter.core.config import get_settings
from modelrouter.models.model_record import ModelCategory
from modelrouter.services.resolution import Resolution, resolve_model

router = APIRouter(prefix="/models", tags=["models"])

VALID_CATEGORIES = [c.value for c in ModelCategory]


@router.get(
    "/{category}",
    response_model=Resolution,
    summary="Resolve the model id for a category",
)
async def get_model(
    category: str,
    auth: ClientAuth,
    session: Session,
    project: str | None = Query(default=None, max_length=100),
    user_role: str | None = Query(default=None, max_length=100),
) -> Resolution:
    """Walk overrides, experiments and the registry to pick a model id.

    Always answers 200 for a valid category: when the registry is empty or
    unreadable the built-in emergency mapping is returned instead.
    """
    if category not in VALID_CATEGORIES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Invalid model category", "valid_categories": VALID_CATEGORIES},
        )

    return await resolve_model(
        session,
        ModelCategory(category),
        project=project,
        role=user_role,
        default_role=get_settings().default_user_role,
    )
