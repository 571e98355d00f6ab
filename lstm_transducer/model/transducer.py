import logging
from typing import Sequence

import numpy as np
from huggingface_hub import hf_hub_download

from lstm_transducer.config import ModelConfig
from lstm_transducer.model.metadata import (
    DECODER_KEYS,
    ENCODER_KEYS,
    ModelDimensions,
    collect_dimensions,
    exit_on_problems,
)
from lstm_transducer.model.session import ModelHandle, load_model
from lstm_transducer.model.state import (
    RecurrentState,
    initial_state,
    stack_states,
    unstack_states,
)
from lstm_transducer.model.symbol_table import SymbolTable

logger = logging.getLogger(__name__)

DEFAULT_FILENAMES = {
    "encoder": "encoder.onnx",
    "decoder": "decoder.onnx",
    "joiner": "joiner.onnx",
    "tokens": "tokens.txt",
}


class LstmTransducerModel:
    """Encoder, decoder and joiner graphs of a streaming LSTM transducer.

    The three handles are read-only once loaded and can be shared by any
    number of streams. Per-stream data (recurrent state, hypothesis) never
    lives here.
    """

    blank_id = 0

    def __init__(self, config: ModelConfig):
        self.config = config

        self.encoder: ModelHandle = load_model(config.encoder, config, "encoder")
        self.decoder: ModelHandle = load_model(config.decoder, config, "decoder")
        encoder_dims, problems = collect_dimensions(
            self.encoder.metadata, ENCODER_KEYS, "encoder"
        )
        decoder_dims, decoder_problems = collect_dimensions(
            self.decoder.metadata, DECODER_KEYS, "decoder"
        )
        # Bad metadata stops loading before the joiner.
        exit_on_problems(problems + decoder_problems)

        self.joiner: ModelHandle = load_model(config.joiner, config, "joiner")

        self.dims = ModelDimensions(**encoder_dims, **decoder_dims)
        self.symbol_table = (
            SymbolTable.from_file(config.tokens) if config.tokens else None
        )
        logger.info("Loaded LSTM transducer %s", self.dims)

    @property
    def context_size(self) -> int:
        return self.dims.context_size

    @property
    def vocab_size(self) -> int:
        return self.dims.vocab_size

    @property
    def chunk_size(self) -> int:
        return self.dims.T

    @property
    def chunk_shift(self) -> int:
        return self.dims.decode_chunk_len

    def get_encoder_init_states(self) -> RecurrentState:
        return initial_state(self.dims)

    def stack_states(self, states: Sequence[RecurrentState]) -> RecurrentState:
        return stack_states(states)

    def unstack_states(self, state: RecurrentState) -> list[RecurrentState]:
        return unstack_states(state)

    def run_encoder(
        self, features: np.ndarray, state: RecurrentState
    ) -> tuple[np.ndarray, RecurrentState]:
        """Run one chunk through the encoder.

        ``state`` is consumed; the returned state is the only valid input for
        the next chunk of the same stream(s).

        Args:
            features: float32 array of shape (N, T, feature_dim).
            state: recurrent state with batch size N.

        Returns:
            encoder_out of shape (N, T', joiner_dim) and the next state.
        """
        hidden, cell = state.take()
        features = np.ascontiguousarray(features, dtype=np.float32)
        encoder_out, next_hidden, next_cell = self.encoder.run(
            [features, hidden, cell]
        )
        return encoder_out, RecurrentState(next_hidden, next_cell)

    def build_decoder_input(self, hyp: Sequence[int]) -> np.ndarray:
        context_size = self.context_size
        if len(hyp) < context_size:
            raise ValueError(
                f"Hypothesis has {len(hyp)} tokens, decoder needs {context_size}. "
                "Pad new hypotheses with blanks."
            )
        context = np.asarray(hyp[len(hyp) - context_size :], dtype=np.int64)
        return context.reshape(1, context_size)

    def build_decoder_input_batch(self, hyps: Sequence[Sequence[int]]) -> np.ndarray:
        return np.concatenate([self.build_decoder_input(h) for h in hyps], axis=0)

    def run_decoder(self, decoder_input: np.ndarray) -> np.ndarray:
        return self.decoder.run([decoder_input])[0]

    def run_joiner(self, encoder_out: np.ndarray, decoder_out: np.ndarray) -> np.ndarray:
        return self.joiner.run([encoder_out, decoder_out])[0]

    @classmethod
    def from_pretrained(
        cls,
        repo_id: str,
        filenames: dict[str, str] | None = None,
        revision: str | None = None,
        **config_kwargs,
    ) -> "LstmTransducerModel":
        names = dict(DEFAULT_FILENAMES)
        if filenames:
            names.update(filenames)

        paths: dict[str, str | None] = {}
        for kind in ("encoder", "decoder", "joiner"):
            paths[kind] = hf_hub_download(
                repo_id=repo_id, filename=names[kind], revision=revision
            )
        paths["tokens"] = None
        if names.get("tokens"):
            paths["tokens"] = hf_hub_download(
                repo_id=repo_id, filename=names["tokens"], revision=revision
            )
        return cls(ModelConfig(**paths, **config_kwargs))
