"""Numpy stand-ins for the three exported transducer graphs.

They expose the small part of ``onnxruntime.InferenceSession`` that the
loader touches and implement a genuine recurrence, so state ordering
mistakes show up in the outputs.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from types import SimpleNamespace
from unittest import mock

import numpy as np

from lstm_transducer.config import ModelConfig
from lstm_transducer.model.transducer import LstmTransducerModel

FEATURE_DIM = 6
JOINER_DIM = 5
SUBSAMPLING = 2


def default_encoder_meta(**overrides) -> dict[str, str]:
    meta = {
        "model_type": "lstm",
        "num_encoder_layers": "3",
        "T": "8",
        "decode_chunk_len": "4",
        "rnn_hidden_size": "8",
        "d_model": "4",
    }
    meta.update(overrides)
    return {k: v for k, v in meta.items() if v is not None}


def default_decoder_meta(**overrides) -> dict[str, str]:
    meta = {"vocab_size": "7", "context_size": "2"}
    meta.update(overrides)
    return {k: v for k, v in meta.items() if v is not None}


class FakeSession:
    input_names: tuple[str, ...] = ()
    output_names: tuple[str, ...] = ()

    def __init__(self, metadata: dict[str, str]):
        self.metadata = dict(metadata)
        self.run_calls = 0

    def get_inputs(self):
        return [SimpleNamespace(name=name) for name in self.input_names]

    def get_outputs(self):
        return [SimpleNamespace(name=name) for name in self.output_names]

    def get_modelmeta(self):
        return SimpleNamespace(custom_metadata_map=dict(self.metadata))

    def run(self, output_names, input_feed):
        self.run_calls += 1
        if list(output_names) != list(self.output_names):
            raise RuntimeError(f"Unexpected outputs {output_names}")
        if set(input_feed) != set(self.input_names):
            raise RuntimeError(f"Unexpected inputs {sorted(input_feed)}")
        outputs = self.compute(*(input_feed[name] for name in self.input_names))
        return list(outputs)

    def compute(self, *inputs):
        raise NotImplementedError


class FakeEncoder(FakeSession):
    input_names = ("x", "h", "c")
    output_names = ("encoder_out", "next_h", "next_c")

    def __init__(self, metadata: dict[str, str]):
        super().__init__(metadata)
        self.num_layers = int(metadata.get("num_encoder_layers", 1))
        self.d_model = int(metadata.get("d_model", 1))
        self.hidden_size = int(metadata.get("rnn_hidden_size", 1))
        rng = np.random.default_rng(0)
        self.proj = rng.standard_normal((FEATURE_DIM, JOINER_DIM)).astype(np.float32)

    def compute(self, x, h, c):
        if x.dtype != np.float32 or x.ndim != 3 or x.shape[2] != FEATURE_DIM:
            raise RuntimeError(f"Bad encoder input x: {x.dtype} {x.shape}")
        batch = x.shape[0]
        if h.shape != (self.num_layers, batch, self.d_model):
            raise RuntimeError(f"Bad encoder input h: {h.shape}")
        if c.shape != (self.num_layers, batch, self.hidden_size):
            raise RuntimeError(f"Bad encoder input c: {c.shape}")

        mean = x.mean(axis=(1, 2)).reshape(1, batch, 1)
        next_h = (0.5 * h + mean).astype(np.float32)
        next_c = (c + mean).astype(np.float32)

        frames = x[:, ::SUBSAMPLING, :] @ self.proj
        carry = h.mean(axis=(0, 2)).reshape(batch, 1, 1)
        encoder_out = np.tanh(frames + carry).astype(np.float32)
        return encoder_out, next_h, next_c


class FakeDecoder(FakeSession):
    input_names = ("y",)
    output_names = ("decoder_out",)

    def __init__(self, metadata: dict[str, str]):
        super().__init__(metadata)
        self.vocab_size = int(metadata.get("vocab_size", 1))
        self.context_size = int(metadata.get("context_size", 1))
        rng = np.random.default_rng(1)
        self.embedding = rng.standard_normal((self.vocab_size, JOINER_DIM)).astype(
            np.float32
        )

    def compute(self, y):
        if y.dtype != np.int64 or y.ndim != 2 or y.shape[1] != self.context_size:
            raise RuntimeError(f"Bad decoder input y: {y.dtype} {y.shape}")
        weights = np.arange(1, self.context_size + 1, dtype=np.float32)
        out = (self.embedding[y] * weights[None, :, None]).sum(axis=1)
        return (out.astype(np.float32),)


class FakeJoiner(FakeSession):
    input_names = ("encoder_out", "decoder_out")
    output_names = ("logit",)

    def __init__(self, metadata: dict[str, str], vocab_size: int = 7):
        super().__init__(metadata)
        rng = np.random.default_rng(2)
        self.weight = rng.standard_normal((JOINER_DIM, vocab_size)).astype(np.float32)

    def compute(self, encoder_out, decoder_out):
        if encoder_out.shape != decoder_out.shape:
            raise RuntimeError(
                f"Joiner inputs differ: {encoder_out.shape} {decoder_out.shape}"
            )
        logit = np.tanh(encoder_out + decoder_out) @ self.weight
        return (logit.astype(np.float32),)


class FakeRuntime:
    """Replaces ``onnxruntime.InferenceSession`` and remembers what it built."""

    def __init__(self, encoder_meta=None, decoder_meta=None, joiner_meta=None):
        self.encoder_meta = (
            default_encoder_meta() if encoder_meta is None else encoder_meta
        )
        self.decoder_meta = (
            default_decoder_meta() if decoder_meta is None else decoder_meta
        )
        self.joiner_meta = joiner_meta or {}
        self.sessions: dict[str, FakeSession] = {}
        self.session_options = []

    def __call__(self, path, sess_options=None, providers=None):
        self.session_options.append(sess_options)
        name = Path(path).stem
        if name == "encoder":
            session = FakeEncoder(self.encoder_meta)
        elif name == "decoder":
            session = FakeDecoder(self.decoder_meta)
        elif name == "joiner":
            vocab = int(self.decoder_meta.get("vocab_size", 7))
            session = FakeJoiner(self.joiner_meta, vocab_size=vocab)
        else:
            raise RuntimeError(f"Unknown graph {path}")
        self.sessions[name] = session
        return session


def write_model_files(directory: Path) -> ModelConfig:
    for name in ("encoder", "decoder", "joiner"):
        (directory / f"{name}.onnx").write_bytes(b"")
    tokens = directory / "tokens.txt"
    tokens.write_text(
        "<blk> 0\n▁the 1\n▁cat 2\ns 3\n▁sat 4\n▁on 5\n▁mat 6\n", encoding="utf-8"
    )
    return ModelConfig(
        encoder=str(directory / "encoder.onnx"),
        decoder=str(directory / "decoder.onnx"),
        joiner=str(directory / "joiner.onnx"),
        tokens=str(tokens),
    )


@contextmanager
def patched_runtime(runtime: FakeRuntime):
    with mock.patch(
        "lstm_transducer.model.session.ort.InferenceSession", side_effect=runtime
    ):
        yield runtime


def build_model(
    directory: Path, runtime: FakeRuntime | None = None, **config_overrides
) -> tuple[LstmTransducerModel, FakeRuntime]:
    runtime = runtime or FakeRuntime()
    config = write_model_files(directory)
    if config_overrides:
        config = ModelConfig(**{**vars(config), **config_overrides})
    with patched_runtime(runtime):
        model = LstmTransducerModel(config)
    return model, runtime
