import unittest
from unittest import mock

import numpy as np
import onnxruntime as ort

from fakes import FakeSession, make_output
from scan_kit.backends.onnxruntime_backend import OnnxRuntimeBackend, SessionConfig, to_candidate_major
from scan_kit.errors import InferenceError, ModelLoadError


class TestToCandidateMajor(unittest.TestCase):
    def test_channels_first_is_transposed(self) -> None:
        raw = make_output([[1, 2, 3, 4, 0.5, 0.6], [5, 6, 7, 8, 0.7, 0.8]])  # (1, 6, 2)
        self.assertEqual(raw.shape, (1, 6, 2))
        out = to_candidate_major(raw, "channels_first")
        self.assertEqual(out.shape, (2, 6))
        self.assertTrue(np.allclose(out[1], [5, 6, 7, 8, 0.7, 0.8]))

    def test_candidates_first_is_passed_through(self) -> None:
        raw = np.arange(12, dtype=np.float32).reshape(1, 2, 6)
        out = to_candidate_major(raw, "candidates_first")
        self.assertEqual(out.shape, (2, 6))
        self.assertTrue(np.array_equal(out, raw[0]))

    def test_rejects_batches_and_unknown_layouts(self) -> None:
        with self.assertRaises(ValueError):
            to_candidate_major(np.zeros((2, 6, 10), dtype=np.float32))
        with self.assertRaises(ValueError):
            to_candidate_major(np.zeros((1, 6, 10), dtype=np.float32), "rows")
        with self.assertRaises(ValueError):
            to_candidate_major(np.zeros((10,), dtype=np.float32))


class TestOnnxRuntimeBackend(unittest.TestCase):
    def test_run_feeds_input_and_reorients_output(self) -> None:
        session = FakeSession(make_output([[1, 2, 3, 4, 0.5, 0.6]]))
        backend = OnnxRuntimeBackend(session)
        blob = np.zeros((1, 3, 8, 8), dtype=np.float32)
        out = backend.run(blob)
        self.assertEqual(out.shape, (1, 6))
        self.assertEqual(list(session.feeds[0].keys()), ["images"])
        self.assertIs(session.feeds[0]["images"], blob)
        self.assertEqual(backend.providers_in_use, ("CPUExecutionProvider",))

    def test_failure_is_wrapped_and_session_stays_usable(self) -> None:
        session = FakeSession(make_output([[1, 2, 3, 4, 0.5, 0.6]]), fail_first=1)
        backend = OnnxRuntimeBackend(session)
        blob = np.zeros((1, 3, 8, 8), dtype=np.float32)
        with self.assertRaises(InferenceError):
            backend.run(blob)
        self.assertEqual(backend.run(blob).shape, (1, 6))

    def test_unexpected_output_shape_is_inference_error(self) -> None:
        backend = OnnxRuntimeBackend(FakeSession(np.zeros((2, 6, 4), dtype=np.float32)))
        with self.assertRaises(InferenceError):
            backend.run(np.zeros((1, 3, 8, 8), dtype=np.float32))

    def test_invalid_model_bytes_raise_model_load_error(self) -> None:
        cfg = SessionConfig(providers=("CPUExecutionProvider",))
        with self.assertRaises(ModelLoadError):
            OnnxRuntimeBackend.from_bytes(b"definitely not an onnx model", cfg)
        with self.assertRaises(ModelLoadError):
            OnnxRuntimeBackend.from_bytes(b"", cfg)

    def test_unavailable_providers_raise_model_load_error(self) -> None:
        cfg = SessionConfig(providers=("NoSuchExecutionProvider",))
        with self.assertRaises(ModelLoadError):
            OnnxRuntimeBackend.from_bytes(b"\x08\x07", cfg)

    def test_from_bytes_builds_tuned_session(self) -> None:
        session = FakeSession(make_output([[1, 2, 3, 4, 0.5, 0.6]]))
        with mock.patch("onnxruntime.get_available_providers", return_value=["CPUExecutionProvider"]), mock.patch(
            "onnxruntime.InferenceSession", return_value=session
        ) as session_cls:
            with self.assertLogs("scan_kit.backends.onnxruntime_backend", "WARNING") as logs:
                backend = OnnxRuntimeBackend.from_bytes(b"model-bytes")

        self.assertIs(backend.session, session)
        self.assertEqual(backend.input_name, "images")
        self.assertEqual(backend.output_name, "output0")
        session_cls.assert_called_once()
        self.assertEqual(session_cls.call_args.args, (b"model-bytes",))
        kwargs = session_cls.call_args.kwargs
        self.assertEqual(kwargs["providers"], ["CPUExecutionProvider"])
        opts = kwargs["sess_options"]
        self.assertEqual(opts.graph_optimization_level, ort.GraphOptimizationLevel.ORT_ENABLE_ALL)
        self.assertEqual(opts.intra_op_num_threads, 1)
        self.assertEqual(opts.log_severity_level, 2)

        self.assertEqual(len(logs.records), 1)
        self.assertIn("CUDAExecutionProvider", logs.output[0])
        self.assertIn("DnnlExecutionProvider", logs.output[0])
        self.assertNotIn("CPUExecutionProvider", logs.output[0])

    def test_from_bytes_keeps_provider_priority(self) -> None:
        session = FakeSession(make_output([[1, 2, 3, 4, 0.5, 0.6]]))
        available = ["CPUExecutionProvider", "DnnlExecutionProvider", "CUDAExecutionProvider"]
        cfg = SessionConfig(graph_optimization_level="basic", intra_op_num_threads=4)
        with mock.patch("onnxruntime.get_available_providers", return_value=available), mock.patch(
            "onnxruntime.InferenceSession", return_value=session
        ) as session_cls:
            OnnxRuntimeBackend.from_bytes(b"model-bytes", cfg)

        kwargs = session_cls.call_args.kwargs
        self.assertEqual(
            kwargs["providers"], ["CUDAExecutionProvider", "DnnlExecutionProvider", "CPUExecutionProvider"]
        )
        self.assertEqual(kwargs["sess_options"].graph_optimization_level, ort.GraphOptimizationLevel.ORT_ENABLE_BASIC)
        self.assertEqual(kwargs["sess_options"].intra_op_num_threads, 4)

    def test_session_config_validation(self) -> None:
        with self.assertRaises(ValueError):
            SessionConfig(providers="CPUExecutionProvider")
        with self.assertRaises(ValueError):
            SessionConfig(graph_optimization_level="max")
        with self.assertRaises(ValueError):
            SessionConfig(output_layout="nhwc")


if __name__ == "__main__":
    unittest.main()
