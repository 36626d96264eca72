"""
Token Usage and Cost Tracking.

Extracts token counts from LLM responses (OpenAI, Anthropic and Ollama raw
payloads as surfaced by LlamaIndex) and prices them per model.
"""

from typing import Any

from citecheck.validation.schemas import TokenUsage

# USD per 1M tokens
MODEL_PRICING: dict[str, tuple[float, float]] = {
    # Anthropic
    "claude-haiku-4-5": (0.80, 4.00),
    "claude-sonnet-4-5": (3.00, 15.00),
    "claude-opus-4": (15.00, 75.00),
    # OpenAI
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o": (2.50, 10.00),
    "gpt-4-turbo": (10.00, 30.00),
    "gpt-3.5-turbo": (0.50, 1.50),
    # Google
    "gemini-2.0-flash": (0.075, 0.30),
    "gemini-1.5-pro": (1.25, 5.00),
    "gemini-1.5-flash": (0.075, 0.30),
}


def pricing_for(model: str) -> tuple[float, float] | None:
    """Longest pricing key that prefixes the model name (handles dated model IDs)."""
    matches = [key for key in MODEL_PRICING if model.startswith(key)]
    if not matches:
        return None
    return MODEL_PRICING[max(matches, key=len)]


def calculate_cost(input_tokens: int, output_tokens: int, model: str) -> float:
    """Cost in USD; local and unknown models cost nothing."""
    pricing = pricing_for(model)
    if pricing is None:
        return 0.0
    input_price, output_price = pricing
    cost = (input_tokens / 1_000_000) * input_price + (output_tokens / 1_000_000) * output_price
    return round(cost, 6)


def _field(source: Any, name: str) -> Any:
    if isinstance(source, dict):
        return source.get(name)
    return getattr(source, name, None)


def extract_token_usage(raw: Any, model: str, provider: str) -> TokenUsage | None:
    """
    Extract token usage from a raw provider response.

    Args:
        raw: ``CompletionResponse.raw`` (dict or SDK object)
        model: Model name used for pricing
        provider: Backend name recorded on the usage

    Returns:
        TokenUsage, or None when the response carries no usage data
    """
    if raw is None:
        return None

    usage = _field(raw, "usage")
    if usage is not None:
        input_tokens = _field(usage, "prompt_tokens")
        output_tokens = _field(usage, "completion_tokens")
        if input_tokens is None:
            input_tokens = _field(usage, "input_tokens")
            output_tokens = _field(usage, "output_tokens")
    else:
        # Ollama reports evaluation counts at the top level
        input_tokens = _field(raw, "prompt_eval_count")
        output_tokens = _field(raw, "eval_count")

    if input_tokens is None and output_tokens is None:
        return None

    input_tokens = int(input_tokens or 0)
    output_tokens = int(output_tokens or 0)
    return TokenUsage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
        provider=provider,
        model=model,
        cost_usd=calculate_cost(input_tokens, output_tokens, model),
    )


def aggregate_usage(usages: list[TokenUsage | None]) -> TokenUsage | None:
    """Sum usage across verdicts; provider/model collapse to "mixed" when they differ."""
    present = [u for u in usages if u is not None]
    if not present:
        return None

    providers = {u.provider for u in present}
    models = {u.model for u in present}
    return TokenUsage(
        input_tokens=sum(u.input_tokens for u in present),
        output_tokens=sum(u.output_tokens for u in present),
        total_tokens=sum(u.total_tokens for u in present),
        provider=providers.pop() if len(providers) == 1 else "mixed",
        model=models.pop() if len(models) == 1 else "mixed",
        cost_usd=round(sum(u.cost_usd for u in present), 6),
    )
