"""
Model registry.

Immutable, priority-ordered catalog of the backend models a user may be
routed to.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Sequence, Tuple


class RegistryConfigError(ValueError):
    """Raised when the model catalog cannot produce sensible decisions."""


class CostClass(Enum):
    """Relative cost of a model. Informational only."""
    LOW = "low"
    HIGH = "high"


@dataclass(frozen=True)
class ModelDescriptor:
    """Static description of one supported backend model."""
    name: str
    display_name: str
    daily_limit: int
    priority: int
    cost: CostClass
    cooldown_hours: float

    def __post_init__(self):
        """Validate quota and cooldown values."""
        if not self.name or not self.name.strip():
            raise RegistryConfigError("model name is required and cannot be empty")
        if isinstance(self.daily_limit, bool) or not isinstance(self.daily_limit, int):
            raise RegistryConfigError(f"daily_limit for {self.name} must be an integer")
        if self.daily_limit <= 0:
            raise RegistryConfigError(f"daily_limit for {self.name} must be > 0")
        if self.cooldown_hours < 0:
            raise RegistryConfigError(f"cooldown_hours for {self.name} must be >= 0")


class ModelRegistry:
    """Priority-ordered, read-only collection of model descriptors.

    Models are sorted ascending by priority with a stable sort, so the
    definition order is the tie-break between equal priorities.
    """

    def __init__(self, models: Sequence[ModelDescriptor]):
        if not models:
            raise RegistryConfigError("model registry cannot be empty")

        seen = set()
        for model in models:
            if model.name in seen:
                raise RegistryConfigError(f"duplicate model name: {model.name}")
            seen.add(model.name)

        self._models: Tuple[ModelDescriptor, ...] = tuple(
            sorted(models, key=lambda m: m.priority)
        )

    def list(self) -> List[ModelDescriptor]:
        """Models in the order they are tried."""
        return list(self._models)

    def default_model(self) -> ModelDescriptor:
        """Highest-priority model, used as the fail-open fallback."""
        return self._models[0]

    def get(self, name: str) -> Optional[ModelDescriptor]:
        for model in self._models:
            if model.name == name:
                return model
        return None

    def names(self) -> List[str]:
        return [model.name for model in self._models]

    def __iter__(self) -> Iterator[ModelDescriptor]:
        return iter(self._models)

    def __len__(self) -> int:
        return len(self._models)


# Built-in catalog used when no configuration file is supplied
DEFAULT_MODELS: Tuple[ModelDescriptor, ...] = (
    ModelDescriptor(
        name="openai/gpt-4.1",
        display_name="GPT-4.1 (Premium)",
        daily_limit=10,
        priority=1,
        cost=CostClass.HIGH,
        cooldown_hours=3,
    ),
    ModelDescriptor(
        name="openai/gpt-4.1-mini",
        display_name="GPT-4.1 Mini",
        daily_limit=50,
        priority=2,
        cost=CostClass.LOW,
        cooldown_hours=3,
    ),
    ModelDescriptor(
        name="openai/gpt-4.1-nano",
        display_name="GPT-4.1 Nano",
        daily_limit=50,
        priority=3,
        cost=CostClass.LOW,
        cooldown_hours=3,
    ),
    ModelDescriptor(
        name="xai/grok-3-mini",
        display_name="Grok-3 Mini",
        daily_limit=50,
        priority=4,
        cost=CostClass.LOW,
        cooldown_hours=3,
    ),
)


def default_registry() -> ModelRegistry:
    """Registry built from the built-in catalog."""
    return ModelRegistry(DEFAULT_MODELS)
