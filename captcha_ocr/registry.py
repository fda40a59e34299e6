"""Model type -> geometry/artifact lookup."""

from typing import Iterator, List, Mapping

from .config import ModelConfig, RecognizerConfig
from .errors import UnsupportedModelType


class ModelRegistry:
    """Read-only table of supported model types.

    Lookups are exact-key dictionary hits and never touch the filesystem.
    """

    def __init__(self, models: Mapping[str, ModelConfig]):
        self._models = models

    @classmethod
    def from_config(cls, config: RecognizerConfig) -> 'ModelRegistry':
        return cls(config.models)

    def lookup(self, model_type: str) -> ModelConfig:
        try:
            return self._models[model_type]
        except (KeyError, TypeError):
            raise UnsupportedModelType(model_type) from None

    def model_types(self) -> List[str]:
        return sorted(self._models)

    def __contains__(self, model_type) -> bool:
        try:
            return model_type in self._models
        except TypeError:
            return False

    def __iter__(self) -> Iterator[str]:
        return iter(self.model_types())

    def __len__(self) -> int:
        return len(self._models)
