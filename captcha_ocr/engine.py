"""
Inference engines: tensor in, tensor out.

ONNX Runtime is the default backend. TorchScript checkpoints (.pt/.pth)
are supported when torch is installed.
"""

import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List, Optional

import numpy as np

from .errors import InferenceEngineFailed

logger = logging.getLogger(__name__)

ONNX_SUFFIXES = {'.onnx'}
TORCH_SUFFIXES = {'.pt', '.pth'}
DEVICES = ('auto', 'cpu', 'cuda')


def check_device(device: str) -> str:
    if device not in DEVICES:
        raise ValueError(f'Unknown device {device!r}, expected one of {", ".join(DEVICES)}')
    return device


class InferenceEngine(ABC):
    """A loaded model treated as a pure function from input to output tensor."""

    @abstractmethod
    def run(self, tensor: np.ndarray) -> np.ndarray:
        raise NotImplementedError


def resolve_providers(device: str = 'auto') -> List[str]:
    """ONNX Runtime execution providers for 'auto', 'cuda' or 'cpu'."""
    import onnxruntime as ort

    check_device(device)
    if device == 'cpu':
        return ['CPUExecutionProvider']
    available = ort.get_available_providers()
    if device == 'cuda' or (device == 'auto' and 'CUDAExecutionProvider' in available):
        return ['CUDAExecutionProvider', 'CPUExecutionProvider']
    return ['CPUExecutionProvider']


class OnnxEngine(InferenceEngine):
    """onnxruntime.InferenceSession with one named input and one named output."""

    def __init__(self, path, input_name: str = 'input', output_name: str = 'output',
                 providers: Optional[List[str]] = None):
        import onnxruntime as ort

        self.path = Path(path)
        self.input_name = input_name
        self.output_name = output_name
        self.session = ort.InferenceSession(str(self.path), providers=providers or ['CPUExecutionProvider'])
        logger.info('Loaded ONNX model %s (providers=%s)', self.path, self.session.get_providers())

    def run(self, tensor: np.ndarray) -> np.ndarray:
        # 'input'/'output' must match input_names/output_names used at export
        return self.session.run([self.output_name], {self.input_name: tensor})[0]


class TorchScriptEngine(InferenceEngine):
    """TorchScript module (torch.jit.save) with a single tensor input and output."""

    def __init__(self, path, device: str = 'auto'):
        import torch

        self.path = Path(path)
        check_device(device)
        if device == 'auto':
            self.device = torch.device('cuda' if torch.cuda.is_available() else 'cpu')
        else:
            self.device = torch.device(device)
        self.model = torch.jit.load(str(self.path), map_location=self.device)
        self.model.eval()
        logger.info('Loaded TorchScript model %s on %s', self.path, self.device)

    def run(self, tensor: np.ndarray) -> np.ndarray:
        import torch

        with torch.no_grad():
            output = self.model(torch.from_numpy(tensor).to(self.device))
        return output.cpu().numpy()


def create_engine(path, input_name: str = 'input', output_name: str = 'output',
                  device: str = 'auto') -> InferenceEngine:
    """Pick an engine by artifact suffix and load it.

    Raises:
        InferenceEngineFailed: unknown suffix, missing backend, or load failure
    """
    path = Path(path)
    suffix = path.suffix.lower()
    try:
        if suffix in ONNX_SUFFIXES:
            return OnnxEngine(path, input_name, output_name, providers=resolve_providers(device))
        if suffix in TORCH_SUFFIXES:
            return TorchScriptEngine(path, device=device)
    except Exception as e:
        raise InferenceEngineFailed(e) from e
    raise InferenceEngineFailed(ValueError(f'Unsupported model file type: {path.name}'))


class SessionCache:
    """One engine per model type, built lazily and at most once.

    Construction runs under a per-key lock so concurrent first calls for the
    same key share one engine. A failed construction is not cached.
    """

    def __init__(self, factory: Callable[[str], InferenceEngine]):
        self._factory = factory
        self._engines: Dict[str, InferenceEngine] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, key: str) -> InferenceEngine:
        engine = self._engines.get(key)
        if engine is not None:
            return engine

        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            engine = self._engines.get(key)
            if engine is None:
                engine = self._factory(key)
                self._engines[key] = engine
        return engine

    def __contains__(self, key) -> bool:
        return key in self._engines

    def clear(self):
        """Drop all engines. Waits for builds already in progress to finish."""
        with self._guard:
            locks = list(self._locks.values())
            for lock in locks:
                lock.acquire()
            try:
                self._engines.clear()
            finally:
                for lock in locks:
                    lock.release()
