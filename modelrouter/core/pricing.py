"""Static model pricing table.

Prices are USD per 1M tokens. The reconciler stamps these onto new registry
records; the usage aggregator reads the stamped values back from the
registry, so a price edit here only affects models discovered afterwards.
"""

# Maps model ids (or id prefixes) to (input_cost, output_cost) per 1M tokens.
MODEL_PRICING: dict[str, tuple[float, float]] = {
    # Haiku
    "claude-haiku-4-5":   (1.00,  5.00),
    "claude-haiku-3-5":   (0.80,  4.00),
    "claude-3-5-haiku":   (0.80,  4.00),
    "claude-haiku-3":     (0.25,  1.25),
    "claude-3-haiku":     (0.25,  1.25),
    # Sonnet
    "claude-sonnet-4-5":  (3.00, 15.00),
    "claude-sonnet-4":    (3.00, 15.00),
    "claude-sonnet-3-7":  (3.00, 15.00),
    "claude-3-7-sonnet":  (3.00, 15.00),
    "claude-sonnet-3-5":  (3.00, 15.00),
    "claude-3-5-sonnet":  (3.00, 15.00),
    # Opus
    "claude-opus-4-1":    (15.00, 75.00),
    "claude-opus-4":      (15.00, 75.00),
    "claude-3-opus":      (15.00, 75.00),
}

# Unknown models are priced at the balanced tier.
DEFAULT_PRICING: tuple[float, float] = (3.00, 15.00)


def get_pricing(model_id: str) -> tuple[float, float]:
    """Return (input_per_1M, output_per_1M) for a model.

    Exact id first, then the longest table key the id starts with
    (``claude-sonnet-4-20250514`` → ``claude-sonnet-4``), then the default.
    """
    if model_id in MODEL_PRICING:
        return MODEL_PRICING[model_id]
    prefixes = [key for key in MODEL_PRICING if model_id.startswith(key)]
    if prefixes:
        return MODEL_PRICING[max(prefixes, key=len)]
    return DEFAULT_PRICING


def calc_cost(
    input_tokens: int,
    output_tokens: int,
    input_rate: float,
    output_rate: float,
) -> float:
    """Calculate USD cost for token counts at per-1M rates."""
    return (input_tokens * input_rate + output_tokens * output_rate) / 1_000_000
