"""captcha-ocr: CTC captcha recognition on ONNX Runtime."""

__version__ = '1.0.0'

from .codec import CharCodec, best_path, ctc_greedy_decode
from .config import DEFAULT_CONFIG, ModelConfig, RecognizerConfig
from .errors import (
    CaptchaOCRError,
    DimensionMismatch,
    InferenceEngineFailed,
    ModelArtifactMissing,
    PreprocessingFailed,
    UnsupportedModelType,
)
from .ocr_pipeline import CaptchaOCR, run
from .preprocess import preprocess
from .registry import ModelRegistry

__all__ = [
    'CaptchaOCR', 'run',
    'CharCodec', 'best_path', 'ctc_greedy_decode',
    'DEFAULT_CONFIG', 'ModelConfig', 'RecognizerConfig', 'ModelRegistry',
    'preprocess',
    'CaptchaOCRError', 'DimensionMismatch', 'InferenceEngineFailed',
    'ModelArtifactMissing', 'PreprocessingFailed', 'UnsupportedModelType',
]
