"""
captcha-ocr: Fixed-geometry Captcha Recognition
================================================
Image → Resize/Grayscale/Normalize → CTC model (ONNX) → Greedy decode → Text

Usage:
    from captcha_ocr import CaptchaOCR

    ocr = CaptchaOCR()
    text = ocr.run('melon.png', 'melon')

    # or with the shared default instance
    import captcha_ocr
    text = captcha_ocr.run('nol.png', 'nol')
"""

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Optional

import numpy as np

from .codec import CharCodec, ctc_greedy_decode
from .config import DEFAULT_CONFIG, ModelConfig, RecognizerConfig
from .engine import DEVICES, InferenceEngine, SessionCache, check_device, create_engine
from .errors import CaptchaOCRError, InferenceEngineFailed, ModelArtifactMissing
from .preprocess import ImageSource, preprocess
from .registry import ModelRegistry

logger = logging.getLogger(__name__)

EngineFactory = Callable[..., InferenceEngine]


# ============================================================================
# MAIN PIPELINE
# ============================================================================

class CaptchaOCR:
    """End-to-end recognition: config lookup → preprocess → engine → decode."""

    def __init__(
        self,
        config: RecognizerConfig = DEFAULT_CONFIG,
        device: str = 'auto',
        engine_factory: EngineFactory = create_engine,
    ):
        """
        Initialize the pipeline. No model is loaded until first use.

        Args:
            config: Model table, alphabet, artifact directory and I/O slot names
            device: 'cuda', 'cpu', or 'auto'
            engine_factory: Called as factory(path, input_name=..., output_name=..., device=...)
        """
        self.config = config
        self.device = check_device(device)
        self.registry = ModelRegistry.from_config(config)
        self.codec = CharCodec.from_config(config)
        self._engine_factory = engine_factory
        self._engines = SessionCache(self._load_engine)

    def artifact_path(self, model_config: ModelConfig) -> Path:
        return self.config.artifact_path(model_config)

    def _load_engine(self, model_type: str) -> InferenceEngine:
        model_config = self.registry.lookup(model_type)
        path = self.artifact_path(model_config)
        try:
            return self._engine_factory(
                path,
                input_name=self.config.input_name,
                output_name=self.config.output_name,
                device=self.device,
            )
        except InferenceEngineFailed:
            raise
        except Exception as e:
            raise InferenceEngineFailed(e) from e

    def engine(self, model_type: str) -> InferenceEngine:
        """Cached engine for a model type (loaded on first request)."""
        return self._engines.get(model_type)

    def infer(self, tensor: np.ndarray, model_type: str) -> np.ndarray:
        """Run the model on a preprocessed (1, 1, H, W) tensor."""
        engine = self.engine(model_type)
        try:
            output = engine.run(tensor)
        except Exception as e:
            raise InferenceEngineFailed(e) from e
        if output is None:
            raise InferenceEngineFailed(
                KeyError(f'Model returned no {self.config.output_name!r} output'))
        return output

    def decode(self, output) -> str:
        return ctc_greedy_decode(output, self.codec)

    def run(self, image: ImageSource, model_type: str) -> str:
        """
        Recognize the text in one image.

        Args:
            image: Image path, encoded bytes, binary file object or PIL image
            model_type: Registered model type key (e.g. 'melon', 'nol')

        Returns:
            Decoded text (may be empty)

        Raises:
            UnsupportedModelType, ModelArtifactMissing, PreprocessingFailed,
            InferenceEngineFailed, DimensionMismatch
        """
        start = time.perf_counter()

        # 1. Config (no I/O)
        model_config = self.registry.lookup(model_type)

        # 2. Artifact must exist before any image work
        path = self.artifact_path(model_config)
        if not path.is_file():
            raise ModelArtifactMissing(path)

        try:
            # 3. Image → (1, 1, H, W)
            tensor = preprocess(image, model_config)

            # 4. Inference
            output = self.infer(tensor, model_type)
            logger.debug('Output shape %s for %s', np.shape(output), model_type)

            # 5. Decode
            text = self.decode(output)
        except CaptchaOCRError as e:
            logger.error('Inference failed (%s): %s', model_type, e)
            raise

        logger.info('Inference time (%s): %.1f ms', model_type, (time.perf_counter() - start) * 1000)
        return text

    __call__ = run


_default_ocr: Optional[CaptchaOCR] = None
_default_lock = threading.Lock()


def get_default_ocr() -> CaptchaOCR:
    global _default_ocr
    if _default_ocr is None:
        with _default_lock:
            if _default_ocr is None:
                _default_ocr = CaptchaOCR()
    return _default_ocr


def run(image_path: ImageSource, model_type: str) -> str:
    """Recognize one image with the shared default pipeline."""
    return get_default_ocr().run(image_path, model_type)


# ============================================================================
# CLI
# ============================================================================

def main(argv=None):
    import argparse

    from tqdm import tqdm

    parser = argparse.ArgumentParser(description='Captcha OCR (CTC greedy decoding)')
    parser.add_argument('images', nargs='+', help='Input image path(s)')
    parser.add_argument('--model-type', '-m', required=True,
                        choices=ModelRegistry.from_config(DEFAULT_CONFIG).model_types(),
                        help='Model type')
    parser.add_argument('--models-dir', help=f'Directory holding model files (default: {DEFAULT_CONFIG.models_dir})')
    parser.add_argument('--device', '-d', default='auto', choices=DEVICES, help='Device')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    config = DEFAULT_CONFIG
    if args.models_dir:
        config = config.with_models_dir(args.models_dir)
    ocr = CaptchaOCR(config, device=args.device)

    failures = 0
    images = tqdm(args.images, desc='Recognizing', unit='img', disable=len(args.images) < 2)
    for image_path in images:
        try:
            text = ocr.run(image_path, args.model_type)
        except CaptchaOCRError as e:
            failures += 1
            tqdm.write(f'{image_path}: FAILED [{type(e).__name__}] {e}')
            continue
        tqdm.write(f'{image_path}: {text}')

    return 1 if failures else 0


if __name__ == '__main__':
    raise SystemExit(main())
