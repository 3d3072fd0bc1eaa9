from __future__ import annotations

from dataclasses import dataclass

DEFAULT_MODEL_ID = "claude-3-5-sonnet-20240620"


@dataclass(frozen=True, slots=True)
class ModelInfo:
    model_id: str
    max_tokens: int
    context_window: int
    supports_images: bool
    supports_prompt_cache: bool
    # USD per million tokens.
    input_price: float
    output_price: float
    cache_writes_price: float | None = None
    cache_reads_price: float | None = None


KNOWN_MODELS: dict[str, ModelInfo] = {
    info.model_id: info
    for info in (
        ModelInfo(
            model_id="claude-3-5-sonnet-20240620",
            max_tokens=8192,
            context_window=200_000,
            supports_images=True,
            supports_prompt_cache=True,
            input_price=3.0,
            output_price=15.0,
            cache_writes_price=3.75,
            cache_reads_price=0.3,
        ),
        ModelInfo(
            model_id="claude-3-opus-20240229",
            max_tokens=4096,
            context_window=200_000,
            supports_images=True,
            supports_prompt_cache=True,
            input_price=15.0,
            output_price=75.0,
            cache_writes_price=18.75,
            cache_reads_price=1.5,
        ),
        ModelInfo(
            model_id="claude-3-sonnet-20240229",
            max_tokens=4096,
            context_window=200_000,
            supports_images=True,
            supports_prompt_cache=False,
            input_price=3.0,
            output_price=15.0,
        ),
        ModelInfo(
            model_id="claude-3-haiku-20240307",
            max_tokens=4096,
            context_window=200_000,
            supports_images=True,
            supports_prompt_cache=True,
            input_price=0.25,
            output_price=1.25,
            cache_writes_price=0.3,
            cache_reads_price=0.03,
        ),
    )
}


def get_model_info(model_id: str | None) -> ModelInfo:
    if model_id and model_id in KNOWN_MODELS:
        return KNOWN_MODELS[model_id]
    return KNOWN_MODELS[DEFAULT_MODEL_ID]


def format_price(price: float) -> str:
    return f"${price:,.2f}"


def describe_model(info: ModelInfo) -> list[str]:
    lines = [
        "Supports images" if info.supports_images else "Does not support images",
        "Supports prompt caching" if info.supports_prompt_cache else "Does not support prompt caching",
        f"Max output: {info.max_tokens:,} tokens",
        f"Input price: {format_price(info.input_price)}/million tokens",
    ]
    if info.supports_prompt_cache and info.cache_writes_price and info.cache_reads_price:
        lines.append(f"Cache writes price: {format_price(info.cache_writes_price)}/million tokens")
        lines.append(f"Cache reads price: {format_price(info.cache_reads_price)}/million tokens")
    lines.append(f"Output price: {format_price(info.output_price)}/million tokens")
    return lines
