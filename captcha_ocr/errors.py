"""Error kinds raised by the recognition pipeline.

Every error is raised at the step that failed and carries the offending
key, path, dimensions or underlying exception in its message.
"""

from pathlib import Path
from typing import Sequence, Union


class CaptchaOCRError(Exception):
    """Base class for all pipeline failures."""


class UnsupportedModelType(CaptchaOCRError, LookupError):
    def __init__(self, model_type: str):
        self.model_type = model_type
        super().__init__(f'Unsupported model type: {model_type!r}')


class ModelArtifactMissing(CaptchaOCRError, FileNotFoundError):
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        super().__init__(f'Model file not found: {self.path}')

    def __str__(self):
        return self.args[0]


class PreprocessingFailed(CaptchaOCRError):
    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f'Image preprocessing failed: {cause}')


class DimensionMismatch(CaptchaOCRError, ValueError):
    """Output tensor shape does not agree with the configured alphabet."""

    def __init__(self, expected: Union[int, Sequence], got: Union[int, Sequence]):
        self.expected = expected
        self.got = got
        super().__init__(f'Dimension mismatch: expected {expected}, got {got}')


class InferenceEngineFailed(CaptchaOCRError):
    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f'Inference engine failed: {cause}')
