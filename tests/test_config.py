"""Unit tests for configuration validation."""

from __future__ import annotations

import unittest

from lstm_transducer.config import EngineConfig, ModelConfig


class ModelConfigTests(unittest.TestCase):
    def test_defaults(self) -> None:
        config = ModelConfig(encoder="e.onnx", decoder="d.onnx", joiner="j.onnx")
        self.assertEqual(1, config.intra_op_threads)
        self.assertEqual(1, config.inter_op_threads)
        self.assertEqual("cpu", config.provider)
        self.assertFalse(config.debug)

    def test_is_immutable(self) -> None:
        config = ModelConfig(encoder="e", decoder="d", joiner="j")
        with self.assertRaises(AttributeError):
            config.num_threads = 4

    def test_rejects_bad_values(self) -> None:
        with self.assertRaises(ValueError):
            ModelConfig(encoder="e", decoder="d", joiner="j", num_threads=0)
        with self.assertRaises(ValueError):
            ModelConfig(encoder="e", decoder="d", joiner="j", inter_op_num_threads=-1)
        with self.assertRaises(ValueError):
            ModelConfig(encoder="e", decoder="d", joiner="j", provider="tpu")


class EngineConfigTests(unittest.TestCase):
    def test_rejects_bad_values(self) -> None:
        model = ModelConfig(encoder="e", decoder="d", joiner="j")
        with self.assertRaises(ValueError):
            EngineConfig(model=model, max_num_streams=0)
        with self.assertRaises(ValueError):
            EngineConfig(model=model, decode_batch_size=0)
        with self.assertRaises(ValueError):
            EngineConfig(model=model, tail_padding_frames=-1)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
