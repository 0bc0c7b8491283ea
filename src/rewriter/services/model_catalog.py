"""Models offered in the rewriter's model picker."""
from dataclasses import asdict, dataclass
from typing import Dict, List


@dataclass(frozen=True)
class ModelOption:
    value: str
    label: str
    description: str


MODEL_OPTIONS: List[ModelOption] = [
    ModelOption("gpt-5-2025-08-07", "GPT-5", "Most powerful, best quality"),
    ModelOption("gpt-5-mini-2025-08-07", "GPT-5 Mini", "Faster and cheaper, still high quality"),
    ModelOption("gpt-5-nano-2025-08-07", "GPT-5 Nano", "Fastest and cheapest, good for simple tasks"),
]


def list_models(default_model: str) -> Dict:
    return {
        "default": default_model,
        "models": [asdict(m) for m in MODEL_OPTIONS],
    }
