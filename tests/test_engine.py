"""Engine selection, ONNX Runtime wrapper and the per-key session cache."""

import importlib.util
import threading
import time
import unittest
from unittest import mock

import numpy as np

from captcha_ocr.engine import (
    InferenceEngine,
    OnnxEngine,
    SessionCache,
    TorchScriptEngine,
    create_engine,
    resolve_providers,
)
from captcha_ocr.errors import InferenceEngineFailed


class CountingEngine(InferenceEngine):
    def __init__(self, key):
        self.key = key

    def run(self, tensor):
        return tensor


class TestSessionCache(unittest.TestCase):
    def test_built_once_per_key(self):
        built = []

        def factory(key):
            built.append(key)
            return CountingEngine(key)

        cache = SessionCache(factory)
        first = cache.get('melon')
        self.assertIs(cache.get('melon'), first)
        self.assertIsNot(cache.get('nol'), first)
        self.assertEqual(built, ['melon', 'nol'])
        self.assertIn('melon', cache)

    def test_concurrent_first_use(self):
        built = []

        def slow_factory(key):
            built.append(key)
            time.sleep(0.05)
            return CountingEngine(key)

        cache = SessionCache(slow_factory)
        results = []
        threads = [threading.Thread(target=lambda: results.append(cache.get('melon'))) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(built, ['melon'])
        self.assertEqual(len(results), 8)
        self.assertTrue(all(r is results[0] for r in results))

    def test_failed_construction_not_cached(self):
        calls = []

        def flaky(key):
            calls.append(key)
            if len(calls) == 1:
                raise InferenceEngineFailed(RuntimeError('load failed'))
            return CountingEngine(key)

        cache = SessionCache(flaky)
        with self.assertRaises(InferenceEngineFailed):
            cache.get('nol')
        self.assertNotIn('nol', cache)
        self.assertIsInstance(cache.get('nol'), CountingEngine)
        self.assertEqual(len(calls), 2)

    def test_clear(self):
        cache = SessionCache(CountingEngine)
        first = cache.get('melon')
        cache.clear()
        self.assertIsNot(cache.get('melon'), first)

    def test_clear_waits_for_build_in_progress(self):
        entered = threading.Event()
        release = threading.Event()

        def blocking_factory(key):
            entered.set()
            release.wait(5)
            return CountingEngine(key)

        cache = SessionCache(blocking_factory)
        builder = threading.Thread(target=cache.get, args=('melon',))
        builder.start()
        self.assertTrue(entered.wait(5))

        clearer = threading.Thread(target=cache.clear)
        clearer.start()
        time.sleep(0.05)
        self.assertTrue(clearer.is_alive())

        release.set()
        builder.join(5)
        clearer.join(5)
        self.assertFalse(clearer.is_alive())
        self.assertNotIn('melon', cache)


class TestResolveProviders(unittest.TestCase):
    GPU = ['CUDAExecutionProvider', 'CPUExecutionProvider']

    def test_cpu(self):
        with mock.patch('onnxruntime.get_available_providers', return_value=self.GPU) as available:
            self.assertEqual(resolve_providers('cpu'), ['CPUExecutionProvider'])
        available.assert_not_called()

    def test_auto_uses_cuda_when_available(self):
        with mock.patch('onnxruntime.get_available_providers', return_value=self.GPU):
            self.assertEqual(resolve_providers('auto'), self.GPU)

    def test_auto_falls_back_to_cpu(self):
        with mock.patch('onnxruntime.get_available_providers', return_value=['CPUExecutionProvider']):
            self.assertEqual(resolve_providers('auto'), ['CPUExecutionProvider'])

    def test_cuda_requested(self):
        with mock.patch('onnxruntime.get_available_providers', return_value=['CPUExecutionProvider']):
            self.assertEqual(resolve_providers('cuda'), self.GPU)

    def test_unknown_device(self):
        with self.assertRaises(ValueError):
            resolve_providers('gpu')
        with self.assertRaises(InferenceEngineFailed):
            create_engine('models/model_melon.onnx', device='gpu')


class TestCreateEngine(unittest.TestCase):
    def test_unknown_suffix(self):
        with self.assertRaises(InferenceEngineFailed) as ctx:
            create_engine('models/model_melon.tflite')
        self.assertIn('model_melon.tflite', str(ctx.exception))

    def test_load_error_is_wrapped(self):
        with mock.patch('onnxruntime.InferenceSession', side_effect=RuntimeError('bad protobuf')):
            with self.assertRaises(InferenceEngineFailed) as ctx:
                create_engine('models/model_melon.onnx', device='cpu')
        self.assertIsInstance(ctx.exception.cause, RuntimeError)

    def test_onnx_named_slots(self):
        session = mock.Mock()
        output = np.zeros((57, 1, 27), dtype=np.float32)
        session.run.return_value = [output]
        with mock.patch('onnxruntime.InferenceSession', return_value=session) as ctor:
            engine = create_engine('models/model_melon.onnx', device='cpu')

        self.assertIsInstance(engine, OnnxEngine)
        self.assertEqual(ctor.call_args.kwargs['providers'], ['CPUExecutionProvider'])

        tensor = np.zeros((1, 1, 70, 230), dtype=np.float32)
        self.assertIs(engine.run(tensor), output)
        session.run.assert_called_once_with(['output'], {'input': tensor})


@unittest.skipUnless(importlib.util.find_spec('torch'), 'torch not installed')
class TestTorchScriptEngine(unittest.TestCase):
    def test_pt_artifact_loads_torchscript(self):
        import torch

        module = mock.Mock()
        module.return_value = torch.zeros((57, 1, 27))
        with mock.patch('torch.jit.load', return_value=module) as load:
            engine = create_engine('models/model_melon.pt', device='cpu')

        self.assertIsInstance(engine, TorchScriptEngine)
        self.assertEqual(engine.device, torch.device('cpu'))
        self.assertEqual(load.call_args.args[0], 'models/model_melon.pt')
        module.eval.assert_called_once_with()

        tensor = np.full((1, 1, 70, 230), 0.5, dtype=np.float32)
        output = engine.run(tensor)
        self.assertIsInstance(output, np.ndarray)
        self.assertEqual(output.shape, (57, 1, 27))
        (received,), _ = module.call_args
        self.assertIsInstance(received, torch.Tensor)
        self.assertEqual(tuple(received.shape), (1, 1, 70, 230))

    def test_auto_device(self):
        import torch

        with mock.patch('torch.jit.load', return_value=mock.Mock()), \
                mock.patch('torch.cuda.is_available', return_value=False):
            engine = create_engine('models/model_nol.pth', device='auto')
        self.assertEqual(engine.device, torch.device('cpu'))

    def test_load_error_is_wrapped(self):
        with mock.patch('torch.jit.load', side_effect=RuntimeError('not a TorchScript archive')):
            with self.assertRaises(InferenceEngineFailed):
                create_engine('models/model_melon.pt', device='cpu')


if __name__ == '__main__':
    unittest.main()
