"""Catalog of upstream models a turn may target."""

import logging
from dataclasses import dataclass

from chatrelay.errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelInfo:
    id: str
    name: str
    is_paid: bool = False
    enabled: bool = True


MODELS: tuple[ModelInfo, ...] = (
    ModelInfo("openai/gpt-5", "OpenAI: GPT-5", is_paid=True),
    ModelInfo("anthropic/claude-opus-4.5", "Anthropic: Claude Opus 4.5", is_paid=True),
    ModelInfo("anthropic/claude-sonnet-4.5", "Anthropic: Claude Sonnet 4.5", is_paid=True),
    ModelInfo("x-ai/grok-4.1-fast:free", "xAI: Grok 4.1 Fast"),
    ModelInfo("xiaomi/mimo-v2-flash:free", "Xiaomi: MiMo V2 Flash", enabled=False),
    ModelInfo("liquid/lfm-2.5-1.2b-thinking:free", "LiquidAI: LFM2.5-1.2B-Thinking (free)"),
)

_BY_ID: dict[str, ModelInfo] = {m.id: m for m in MODELS}


def enabled_models() -> list[ModelInfo]:
    return [m for m in MODELS if m.enabled]


def resolve_model(model_id: str) -> ModelInfo:
    """Return the catalog entry for *model_id* or raise ValidationError."""
    model = _BY_ID.get(model_id)
    if model is None or not model.enabled:
        logger.info("Rejected unsupported model: %s", model_id)
        raise ValidationError("Model is not supported")
    return model
