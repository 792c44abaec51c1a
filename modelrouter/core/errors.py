"""Error taxonomy shared by the reconciler, resolver and usage aggregator.

Request validation and credential failures are raised as FastAPI
``HTTPException`` in the API layer; the classes here cover failures that
happen below it.
"""

from sqlalchemy.exc import SQLAlchemyError

# What a store round trip can raise: driver errors SQLAlchemy wraps, and
# connection failures (asyncpg ConnectionRefusedError) it does not
STORE_FAILURES: tuple[type[Exception], ...] = (SQLAlchemyError, OSError)


class ModelRouterError(Exception):
    """Base class for service errors."""


class UpstreamFetchError(ModelRouterError):
    """The upstream model catalog could not be fetched or parsed."""


class UnresolvableItemError(ModelRouterError):
    """A catalog entry does not map to any known model category."""

    def __init__(self, model_id: str) -> None:
        super().__init__(f"Could not determine category for model '{model_id}'")
        self.model_id = model_id


class StoreError(ModelRouterError):
    """A write to (or read from) the registry store failed."""
