import threading
from enum import Enum, auto
from itertools import count

import numpy as np

from lstm_transducer.engine.greedy import Hypothesis
from lstm_transducer.features import FeatureExtractor, FeatureState
from lstm_transducer.model.metadata import ModelDimensions
from lstm_transducer.model.state import RecurrentState, initial_state


class StreamStatus(Enum):
    UNINITIALIZED = auto()
    STREAMING = auto()
    FINISHED = auto()


class StreamFinishedError(RuntimeError):
    pass


class Stream:
    counter = count()

    def __init__(
        self,
        dims: ModelDimensions,
        feature_dim: int,
        blank_id: int = 0,
        feature_extractor: FeatureExtractor | None = None,
        tail_padding_frames: int | None = None,
        pad_value: float = 0.0,
    ):
        self.stream_id = next(Stream.counter)
        self.status = StreamStatus.UNINITIALIZED
        self.lock = threading.Lock()

        self.dims = dims
        self.feature_dim = feature_dim
        self.chunk_size = dims.T
        self.chunk_shift = dims.decode_chunk_len
        self.tail_padding_frames = (
            dims.T if tail_padding_frames is None else tail_padding_frames
        )
        self.pad_value = pad_value

        self._feature_extractor = feature_extractor
        self._feature_state = FeatureState()
        self._frames = np.empty((0, feature_dim), dtype=np.float32)
        # Absolute index of self._frames[0].
        self._frames_offset = 0
        self.num_frames = 0
        self.num_processed_frames = 0
        self.num_encoder_frames = 0

        self.state: RecurrentState | None = None
        self.hyp = Hypothesis(context_size=dims.context_size, blank_id=blank_id)
        self.final = False
        self.in_flight = False
        self.error: BaseException | None = None

    @property
    def is_finished(self) -> bool:
        return self.status == StreamStatus.FINISHED

    def _check_open(self) -> None:
        if self.status == StreamStatus.FINISHED:
            raise StreamFinishedError(f"Stream {self.stream_id} is finished.")
        if self.final:
            raise StreamFinishedError(
                f"Input of stream {self.stream_id} was already finished."
            )

    def accept_features(self, frames: np.ndarray) -> None:
        self._check_open()
        frames = np.asarray(frames, dtype=np.float32)
        if frames.ndim != 2 or frames.shape[1] != self.feature_dim:
            raise ValueError(
                f"Expected features of shape (frames, {self.feature_dim}), "
                f"got {frames.shape}"
            )
        self._append_frames(frames)

    def accept_waveform(self, samples: np.ndarray) -> None:
        self._check_open()
        if self._feature_extractor is None:
            raise RuntimeError("Stream was created without a feature extractor.")
        frames = self._feature_extractor.push(samples, self._feature_state)
        self._append_frames(frames)

    def _append_frames(self, frames: np.ndarray) -> None:
        if frames.shape[0] == 0:
            return
        self._frames = np.concatenate([self._frames, frames], axis=0)
        self.num_frames += frames.shape[0]

    def input_finished(self) -> None:
        self._check_open()
        if self.tail_padding_frames > 0:
            padding = np.full(
                (self.tail_padding_frames, self.feature_dim),
                self.pad_value,
                dtype=np.float32,
            )
            self._append_frames(padding)
        self.final = True

    def is_ready(self) -> bool:
        if self.status == StreamStatus.FINISHED:
            return False
        return self.num_frames - self.num_processed_frames >= self.chunk_size

    def pop_chunk(self) -> np.ndarray:
        """Return the next (T, feature_dim) chunk and advance by decode_chunk_len."""
        if not self.is_ready():
            raise RuntimeError(f"Stream {self.stream_id} has no chunk ready.")
        start = self.num_processed_frames - self._frames_offset
        chunk = self._frames[start : start + self.chunk_size].copy()
        self.num_processed_frames += self.chunk_shift

        drop = self.num_processed_frames - self._frames_offset
        if drop > 0:
            self._frames = self._frames[drop:]
            self._frames_offset += drop
        return chunk

    def take_state(self) -> RecurrentState:
        """Hand the recurrent state to an encoder call.

        The first call starts the stream with zero state. Until the matching
        ``put_state`` the stream has an execution in flight and cannot be
        scheduled again.
        """
        if self.status == StreamStatus.FINISHED:
            raise StreamFinishedError(f"Stream {self.stream_id} is finished.")
        if self.in_flight:
            raise RuntimeError(f"Stream {self.stream_id} already has a call in flight.")
        if self.status == StreamStatus.UNINITIALIZED:
            self.state = initial_state(self.dims)
            self.status = StreamStatus.STREAMING
        state, self.state = self.state, None
        self.in_flight = True
        return state

    def put_state(self, state: RecurrentState, num_encoder_frames: int) -> None:
        self.state = state
        self.num_encoder_frames += num_encoder_frames
        self.in_flight = False

    def fail(self, exc: BaseException) -> None:
        """The state handed to a failed call is gone, so the stream cannot go on."""
        self.error = exc
        self.finish()

    def finish(self) -> None:
        self.status = StreamStatus.FINISHED
        self.state = None
        self._frames = np.empty((0, self.feature_dim), dtype=np.float32)
        self._feature_state = FeatureState()
        self.in_flight = False

    @property
    def can_finish(self) -> bool:
        return (
            not self.is_finished
            and self.final
            and not self.in_flight
            and not self.is_ready()
        )
