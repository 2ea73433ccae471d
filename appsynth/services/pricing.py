"""Token pricing -- estimated USD cost of a provider call."""

from decimal import Decimal

_PER_MILLION = Decimal(1_000_000)

# (input $/1M tokens, output $/1M tokens) keyed by a model-name fragment.
# First match wins, so more specific fragments come first.
_MODEL_PRICING: dict[str, list[tuple[str, tuple[Decimal, Decimal]]]] = {
    "google": [
        ("gemini-2.5-flash", (Decimal("0.075"), Decimal("0.30"))),
        ("gemini-3-pro",     (Decimal("3.50"),  Decimal("10.50"))),
        ("gemini-1.5-pro",   (Decimal("3.50"),  Decimal("10.50"))),
    ],
    "openai": [
        ("gpt-4o-mini", (Decimal("0.15"), Decimal("0.60"))),
        ("gpt-4o",      (Decimal("5.00"), Decimal("15.00"))),
        ("gpt-4.1",     (Decimal("15.00"), Decimal("60.00"))),
        ("gpt-5",       (Decimal("15.00"), Decimal("60.00"))),
        ("o1",          (Decimal("15.00"), Decimal("60.00"))),
        ("o3",          (Decimal("15.00"), Decimal("60.00"))),
    ],
    "claude": [
        ("opus",   (Decimal("15.00"), Decimal("75.00"))),
        ("haiku",  (Decimal("0.25"),  Decimal("1.25"))),
        ("sonnet", (Decimal("3.00"),  Decimal("15.00"))),
    ],
}

_DEFAULT_RATES: dict[str, tuple[Decimal, Decimal]] = {
    "google": (Decimal("0.10"), Decimal("0.40")),
    "openai": (Decimal("0.50"), Decimal("1.50")),
    "claude": (Decimal("3.00"), Decimal("15.00")),
}
_FALLBACK_RATES = (Decimal("0.10"), Decimal("0.40"))


def _get_token_rates(provider_id: str, model: str) -> tuple[Decimal, Decimal]:
    """Return (input_rate, output_rate) per 1M tokens for a provider's model."""
    name = (model or "").lower()
    for fragment, rates in _MODEL_PRICING.get(provider_id, []):
        if fragment in name:
            return rates
    return _DEFAULT_RATES.get(provider_id, _FALLBACK_RATES)


def estimate_cost(
    provider_id: str,
    model: str,
    input_tokens: int,
    output_tokens: int,
) -> Decimal:
    """Estimated USD cost of one call."""
    if not model:
        return Decimal(0)
    input_rate, output_rate = _get_token_rates(provider_id, model)
    return (
        Decimal(input_tokens) * input_rate + Decimal(output_tokens) * output_rate
    ) / _PER_MILLION
