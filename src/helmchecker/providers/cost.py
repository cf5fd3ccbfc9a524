"""
Cost estimation for HelmChecker providers.

Uses LiteLLM's pricing data where it knows the model and falls back to a
small per-1k-token table for the rest.
"""

import logging

from helmchecker.providers.models import TokenUsage

logger = logging.getLogger(__name__)

# (prompt, completion) USD per 1k tokens
OPENAI_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4": (0.03, 0.06),
    "gpt-4-turbo-preview": (0.01, 0.03),
    "gpt-4o": (0.005, 0.015),
    "gpt-3.5-turbo": (0.0005, 0.0015),
}

COPILOT_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4": (0.03, 0.06),
    "gpt-3.5": (0.0015, 0.002),
}

DEFAULT_PRICING: tuple[float, float] = (0.01, 0.02)


def table_cost(
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
    table: dict[str, tuple[float, float]],
    default: tuple[float, float] = DEFAULT_PRICING,
    substring_match: bool = False,
) -> float:
    """
    Compute cost from a per-1k-token pricing table.

    Args:
        model: Model name.
        prompt_tokens: Input token count.
        completion_tokens: Output token count.
        table: Mapping of model name to (prompt, completion) rates.
        default: Rates used when the model is not in the table.
        substring_match: Match the longest table key contained in the model name.

    Returns:
        Estimated cost in USD.
    """
    rates = table.get(model)
    if rates is None and substring_match:
        for key in sorted(table, key=len, reverse=True):
            if key in model:
                rates = table[key]
                break
    if rates is None:
        rates = default
    prompt_rate, completion_rate = rates
    return prompt_tokens / 1000 * prompt_rate + completion_tokens / 1000 * completion_rate


def litellm_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float | None:
    """Price a call with LiteLLM, or None if LiteLLM does not know the model."""
    try:
        from litellm import cost_per_token

        prompt_cost, completion_cost = cost_per_token(
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
        )
        return prompt_cost + completion_cost
    except Exception as e:
        logger.debug(f"LiteLLM has no pricing for {model}: {e}")
        return None


def estimate_cost(
    model: str,
    usage: TokenUsage,
    table: dict[str, tuple[float, float]] = OPENAI_PRICING,
    default: tuple[float, float] | None = None,
    substring_match: bool = False,
) -> float:
    """
    Estimate the USD cost of a call.

    Args:
        model: Model name as sent to the backend.
        usage: Token usage of the call.
        table: Fallback pricing table.
        default: Fallback rates for models missing from the table; when None
            the table's "gpt-4" entry is used.
        substring_match: Match table keys contained in the model name.

    Returns:
        Estimated cost in USD.
    """
    cost = litellm_cost(model, usage.prompt_tokens, usage.completion_tokens)
    if cost is not None:
        return cost
    if default is None:
        default = table.get("gpt-4", DEFAULT_PRICING)
    return table_cost(
        model,
        usage.prompt_tokens,
        usage.completion_tokens,
        table,
        default=default,
        substring_match=substring_match,
    )


def count_tokens(model: str, text: str) -> int:
    """
    Count tokens in text for the given model.

    Falls back to a four-characters-per-token approximation when LiteLLM
    cannot tokenize for the model.
    """
    if not text:
        return 0
    try:
        from litellm import token_counter

        return token_counter(model=model, text=text)
    except Exception as e:
        logger.debug(f"Token counting failed for {model}: {e}")
        return max(1, len(text) // 4)
