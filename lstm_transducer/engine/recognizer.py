import logging
import math
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import numpy as np
from torch.profiler import record_function

from lstm_transducer.config import EngineConfig
from lstm_transducer.engine.greedy import greedy_search
from lstm_transducer.engine.stream import Stream, StreamFinishedError
from lstm_transducer.features import FeatureExtractor
from lstm_transducer.model.session import ExecutionError
from lstm_transducer.model.transducer import LstmTransducerModel

logger = logging.getLogger(__name__)


@dataclass
class RecognitionResult:
    stream_id: int
    text: str
    token_ids: list[int]
    timestamps: list[int]
    is_final: bool
    error: str | None = None


class ShapeLogger:
    def __init__(self, path: str | None, max_entries: int = 200):
        self._path = Path(path) if path else None
        self._max_entries = max_entries
        self._seen: set[tuple] = set()
        self._lock = threading.Lock()
        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, kind: str, **items: object) -> None:
        if self._path is None:
            return
        key = (kind, tuple(items.items()))
        with self._lock:
            if key in self._seen:
                return
            if len(self._seen) >= self._max_entries:
                return
            self._seen.add(key)
            line = kind + " " + " ".join(f"{k}={v}" for k, v in items.items()) + "\n"
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(line)


class Recognizer:
    """Drives streams through one shared transducer model.

    Each stream carries its own recurrent state and hypothesis. Several ready
    streams can be decoded together: their states are stacked into one batch
    for a single encoder call and split back afterwards.
    """

    def __init__(self, config: EngineConfig, model: LstmTransducerModel | None = None):
        self.config = config
        self.model = model if model is not None else LstmTransducerModel(config.model)
        self.feature_extractor = FeatureExtractor(config.features)
        self._pad_value = math.log(config.features.log_zero_guard_value)
        self._shape_logger = ShapeLogger(config.shape_log_path)

    def create_stream(self) -> Stream:
        return Stream(
            dims=self.model.dims,
            feature_dim=self.config.features.feature_dim,
            blank_id=self.model.blank_id,
            feature_extractor=self.feature_extractor,
            tail_padding_frames=self.config.tail_padding_frames,
            pad_value=self._pad_value,
        )

    def decode_stream(self, stream: Stream) -> list[int]:
        """Decode every ready chunk of one stream; returns the new tokens."""
        new_tokens: list[int] = []
        while stream.is_ready():
            new_tokens.extend(self.decode_streams([stream])[0])
        if stream.can_finish:
            stream.finish()
        return new_tokens

    def decode_streams(self, streams: Sequence[Stream]) -> list[list[int]]:
        """Decode exactly one chunk of each stream in a single batch."""
        if not streams:
            return []
        if len({id(s) for s in streams}) != len(streams):
            raise ValueError("A stream may appear only once per batch.")
        for stream in streams:
            if stream.is_finished:
                raise StreamFinishedError(f"Stream {stream.stream_id} is finished.")
            if not stream.is_ready():
                raise RuntimeError(f"Stream {stream.stream_id} has no chunk ready.")

        model = self.model
        features = np.stack([s.pop_chunk() for s in streams], axis=0)
        states = [s.take_state() for s in streams]
        batch_state = model.stack_states(states)

        self._shape_logger.log(
            "encode_in",
            batch=features.shape[0],
            frames=features.shape[1],
            feature_dim=features.shape[2],
            hidden=batch_state.hidden.shape,
            cell=batch_state.cell.shape,
        )
        try:
            with record_function("encode_step"):
                encoder_out, next_state = model.run_encoder(features, batch_state)
        except ExecutionError as exc:
            self._fail_batch(streams, exc)
            raise
        batch_size = len(streams)
        if next_state.batch_size != batch_size or encoder_out.shape[0] != batch_size:
            exc = ExecutionError(
                f"encoder returned batch {encoder_out.shape[0]} with state batch "
                f"{next_state.batch_size} for {batch_size} streams"
            )
            self._fail_batch(streams, exc)
            raise exc
        self._shape_logger.log(
            "encode_out",
            batch=encoder_out.shape[0],
            frames=encoder_out.shape[1],
            hidden=encoder_out.shape[2],
        )

        num_encoder_frames = int(encoder_out.shape[1])
        frame_offsets = [s.num_encoder_frames for s in streams]
        for stream, state in zip(streams, model.unstack_states(next_state)):
            stream.put_state(state, num_encoder_frames)

        with record_function("decode_step"):
            return greedy_search(
                model, encoder_out, [s.hyp for s in streams], frame_offsets
            )

    def _fail_batch(self, streams: Sequence[Stream], exc: ExecutionError) -> None:
        logger.error(
            "Encoder failed for streams %s: %s", [s.stream_id for s in streams], exc
        )
        for stream in streams:
            stream.fail(exc)

    def get_result(self, stream: Stream) -> RecognitionResult:
        token_ids = stream.hyp.tokens
        table = self.model.symbol_table
        text = table.decode(token_ids) if table is not None else ""
        return RecognitionResult(
            stream_id=stream.stream_id,
            text=text,
            token_ids=list(token_ids),
            timestamps=list(stream.hyp.timestamps),
            is_final=stream.is_finished,
            error=str(stream.error) if stream.error is not None else None,
        )
