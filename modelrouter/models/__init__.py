"""Import all models so SQLModel.metadata picks them up."""

from modelrouter.models.experiment import (
    Experiment,
    ExperimentCreate,
    ExperimentRead,
    ExperimentStatus,
    ExperimentStatusUpdate,
    ExperimentVariant,
    VariantStats,
)
from modelrouter.models.model_record import ModelCategory, ModelRecord
from modelrouter.models.override import Override, OverrideCreate, OverrideRead
from modelrouter.models.reconciliation import (
    ReconciliationLock,
    ReconciliationLog,
    TriggerSource,
)
from modelrouter.models.usage_bucket import UsageBucket, UsageEventCreate, UsageTrackResponse

__all__ = [
    "Experiment",
    "ExperimentCreate",
    "ExperimentRead",
    "ExperimentStatus",
    "ExperimentStatusUpdate",
    "ExperimentVariant",
    "ModelCategory",
    "ModelRecord",
    "Override",
    "OverrideCreate",
    "OverrideRead",
    "ReconciliationLock",
    "ReconciliationLog",
    "TriggerSource",
    "UsageBucket",
    "UsageEventCreate",
    "UsageTrackResponse",
    "VariantStats",
]
