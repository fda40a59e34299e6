"""
Recognizer Configuration
===========================
Model geometries, alphabet and engine slot names for captcha recognition.

Everything here must match the training/export settings of the ONNX models:
  - input geometry per model type (exact-fit resize, no padding)
  - alphabet order (class index i -> ALPHABET[i])
  - CTC blank = len(ALPHABET), i.e. the LAST class
  - input/output names given to torch.onnx.export
"""

import string
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping, Union


PROJECT_ROOT = Path(__file__).resolve().parent.parent

# --- Alphabet ---
ALPHABET = string.ascii_uppercase    # 0~25: A~Z, 26: blank

# --- Engine I/O slots (input_names / output_names at export time) ---
INPUT_NAME = 'input'
OUTPUT_NAME = 'output'

# --- Artifacts ---
MODELS_DIR = PROJECT_ROOT / 'models'


@dataclass(frozen=True)
class ModelConfig:
    """Fixed input geometry and artifact file for one model type."""
    model_type: str
    input_width: int
    input_height: int
    artifact_id: str

    def __post_init__(self):
        if not self.model_type:
            raise ValueError('model_type must be a non-empty string')
        if not self.artifact_id:
            raise ValueError(f'artifact_id must be set for model type {self.model_type!r}')
        for name in ('input_width', 'input_height'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f'{name} must be a positive integer, got {value!r}')

    @property
    def input_shape(self):
        """NCHW shape of the model input: (1, 1, H, W)."""
        return (1, 1, self.input_height, self.input_width)


def _freeze_models(models: Union[Mapping[str, ModelConfig], Iterable[ModelConfig]]):
    if isinstance(models, Mapping):
        items = dict(models)
    else:
        items = {}
        for cfg in models:
            if cfg.model_type in items:
                raise ValueError(f'Duplicate model type: {cfg.model_type!r}')
            items[cfg.model_type] = cfg
    for key, cfg in items.items():
        if key != cfg.model_type:
            raise ValueError(f'Model key {key!r} does not match config model_type {cfg.model_type!r}')
    return MappingProxyType(items)


@dataclass(frozen=True)
class RecognizerConfig:
    """Immutable process-wide settings, built once and passed to the pipeline."""
    models: Mapping[str, ModelConfig]
    alphabet: str = ALPHABET
    models_dir: Path = MODELS_DIR
    input_name: str = INPUT_NAME
    output_name: str = OUTPUT_NAME
    # Derived in __post_init__
    num_classes: int = field(init=False)
    blank_index: int = field(init=False)

    def __post_init__(self):
        if not self.alphabet:
            raise ValueError('alphabet must not be empty')
        if len(set(self.alphabet)) != len(self.alphabet):
            raise ValueError(f'alphabet contains duplicate symbols: {self.alphabet!r}')
        object.__setattr__(self, 'models', _freeze_models(self.models))
        object.__setattr__(self, 'models_dir', Path(self.models_dir))
        object.__setattr__(self, 'blank_index', len(self.alphabet))
        object.__setattr__(self, 'num_classes', len(self.alphabet) + 1)  # +1 for blank

    def artifact_path(self, model_config: ModelConfig) -> Path:
        return self.models_dir / model_config.artifact_id

    def with_models_dir(self, models_dir: Union[str, Path]) -> 'RecognizerConfig':
        return replace(self, models_dir=Path(models_dir))


DEFAULT_MODELS = (
    ModelConfig('melon', input_width=230, input_height=70, artifact_id='model_melon.onnx'),
    ModelConfig('nol', input_width=210, input_height=70, artifact_id='model_nol.onnx'),
)

DEFAULT_CONFIG = RecognizerConfig(models=DEFAULT_MODELS)
