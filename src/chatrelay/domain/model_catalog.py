from __future__ import annotations

from typing import List, Optional

from .chat_models import ModelOption


MODELS: List[ModelOption] = [
    ModelOption(id="google/gemini-2.5-flash", name="Gemini 2.5 Flash", provider="Google"),
    ModelOption(id="openai/gpt-4o-mini", name="GPT-4o Mini", provider="OpenAI"),
    ModelOption(id="meta-llama/llama-3.1-70b-instruct", name="Llama 3.1 70B", provider="Meta"),
    ModelOption(id="openai/gpt-4o", name="GPT-4o", provider="OpenAI"),
    ModelOption(id="anthropic/claude-sonnet-4", name="Claude Sonnet 4", provider="Anthropic"),
]

DEFAULT_MODEL = MODELS[0].id


def find_model(model_id: str) -> Optional[ModelOption]:
    for option in MODELS:
        if option.id == model_id:
            return option
    return None


def get_model_name(model_id: str) -> str:
    option = find_model(model_id)
    return option.name if option else model_id
