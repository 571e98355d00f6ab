from collections import deque
from contextlib import ExitStack
from dataclasses import dataclass
import logging
import queue
import threading
import time
from typing import Any, Dict

import numpy as np

from lstm_transducer.config import EngineConfig
from lstm_transducer.engine.recognizer import RecognitionResult, Recognizer
from lstm_transducer.engine.stream import Stream
from lstm_transducer.model.session import ExecutionError
from lstm_transducer.model.transducer import LstmTransducerModel

logger = logging.getLogger(__name__)


@dataclass
class EngineMetrics:
    start_time: float
    decode_time: float = 0.0
    decode_calls: int = 0
    decode_chunks: int = 0
    decode_tokens: int = 0
    failed_calls: int = 0


class RecognizerEngine:
    """Background decoding for many concurrent streams.

    Producers push audio or features from any thread. A single worker thread
    batches ready streams, so each stream has at most one execution in flight
    and its chunks are always encoded in arrival order.
    """

    def __init__(self, config: EngineConfig, model: LstmTransducerModel | None = None):
        self.config = config
        self.recognizer = Recognizer(config, model=model)
        self.streams: Dict[int, Stream] = {}
        self._stream_lock = threading.Lock()
        self._queued: set[int] = set()
        self._ready_queue: queue.SimpleQueue[Stream] = queue.SimpleQueue()
        self._result_lock = threading.Lock()
        self._stream_results: Dict[int, deque[RecognitionResult]] = {}

        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._update_cond = threading.Condition()
        self._update_seq = 0
        self._metrics = EngineMetrics(start_time=time.monotonic())
        self._metrics_lock = threading.Lock()

    def close(self) -> None:
        self.stop_workers()

    def create_stream(self) -> int:
        with self._stream_lock:
            if len(self.streams) >= self.config.max_num_streams:
                raise RuntimeError("No free stream slot available.")
            seq = self.recognizer.create_stream()
            self.streams[seq.stream_id] = seq
        with self._result_lock:
            self._stream_results[seq.stream_id] = deque()
        return seq.stream_id

    def get_stream(self, stream_id: int) -> Stream | None:
        with self._stream_lock:
            return self.streams.get(stream_id)

    def push_samples(
        self, stream_id: int, samples: np.ndarray, final: bool = False
    ) -> None:
        seq = self._require_stream(stream_id)
        with seq.lock:
            if samples.size:
                seq.accept_waveform(samples)
            if final:
                seq.input_finished()
        self._queue_stream(seq)

    def push_features(
        self, stream_id: int, frames: np.ndarray, final: bool = False
    ) -> None:
        seq = self._require_stream(stream_id)
        with seq.lock:
            if frames.size:
                seq.accept_features(frames)
            if final:
                seq.input_finished()
        self._queue_stream(seq)

    def _require_stream(self, stream_id: int) -> Stream:
        seq = self.get_stream(stream_id)
        if seq is None:
            raise KeyError(f"Unknown stream {stream_id}")
        return seq

    def _queue_stream(self, seq: Stream) -> None:
        with seq.lock:
            if not (seq.is_ready() or seq.can_finish):
                return
        with self._stream_lock:
            if seq.stream_id in self._queued:
                return
            self._queued.add(seq.stream_id)
        self._ready_queue.put(seq)

    def _pop_ready(self) -> Stream | None:
        try:
            seq = self._ready_queue.get_nowait()
        except queue.Empty:
            return None
        with self._stream_lock:
            self._queued.discard(seq.stream_id)
        return seq

    def start_workers(self, interval: float = 0.001) -> None:
        if self._threads:
            return
        self._stop_event.clear()
        self._threads = [
            threading.Thread(target=self._decode_loop, args=(interval,), daemon=True)
        ]
        for thread in self._threads:
            thread.start()

    def stop_workers(self) -> None:
        if not self._threads:
            return
        self._stop_event.set()
        for thread in self._threads:
            thread.join()
        self._threads = []

    def _decode_loop(self, interval: float) -> None:
        while not self._stop_event.is_set():
            try:
                updated = self.step()
            except Exception:
                logger.exception("Decode step failed")
                updated = False
            if not updated:
                self._stop_event.wait(interval)

    def step(self) -> bool:
        """Decode one chunk for up to ``decode_batch_size`` ready streams."""
        batch: list[Stream] = []
        finishing: list[Stream] = []
        while len(batch) < self.config.decode_batch_size:
            seq = self._pop_ready()
            if seq is None:
                break
            with seq.lock:
                if seq.is_ready():
                    batch.append(seq)
                elif seq.can_finish:
                    finishing.append(seq)

        for seq in finishing:
            with seq.lock:
                if seq.can_finish:
                    seq.finish()
            self._publish(seq)

        if not batch:
            return bool(finishing)

        start = time.perf_counter()
        token_lists: list[list[int]] = [[] for _ in batch]
        failed = False
        with ExitStack() as stack:
            for seq in sorted(batch, key=lambda s: s.stream_id):
                stack.enter_context(seq.lock)
            try:
                token_lists = self.recognizer.decode_streams(batch)
            except ExecutionError:
                logger.exception(
                    "Execution failed for streams %s",
                    [seq.stream_id for seq in batch],
                )
                failed = True
            for seq in batch:
                if seq.can_finish:
                    seq.finish()

        elapsed = time.perf_counter() - start
        with self._metrics_lock:
            self._metrics.decode_time += elapsed
            self._metrics.decode_calls += 1
            self._metrics.decode_chunks += len(batch)
            self._metrics.decode_tokens += sum(len(t) for t in token_lists)
            if failed:
                self._metrics.failed_calls += 1

        for seq, tokens in zip(batch, token_lists):
            if tokens or seq.is_finished:
                self._publish(seq)
            self._queue_stream(seq)
        return True

    def _publish(self, seq: Stream) -> None:
        with seq.lock:
            result = self.recognizer.get_result(seq)
        with self._result_lock:
            self._stream_results.setdefault(seq.stream_id, deque()).append(result)
        self._notify_update()

    def collect_results(self, stream_id: int) -> list[RecognitionResult]:
        with self._result_lock:
            pending = self._stream_results.get(stream_id)
            if not pending:
                return []
            results = list(pending)
            pending.clear()
        if results[-1].is_final:
            self.cleanup_stream(stream_id)
        return results

    def cleanup_stream(self, stream_id: int) -> None:
        with self._stream_lock:
            self.streams.pop(stream_id, None)
        with self._result_lock:
            self._stream_results.pop(stream_id, None)

    def get_update_seq(self) -> int:
        with self._update_cond:
            return self._update_seq

    def wait_for_update(self, last_seq: int, timeout: float | None = None) -> int:
        with self._update_cond:
            if self._update_seq != last_seq:
                return self._update_seq
            self._update_cond.wait(timeout=timeout)
            return self._update_seq

    def _notify_update(self) -> None:
        with self._update_cond:
            self._update_seq += 1
            self._update_cond.notify_all()

    def get_metrics(self) -> dict[str, Any]:
        with self._metrics_lock:
            metrics = EngineMetrics(**vars(self._metrics))
        with self._stream_lock:
            connected = len(self.streams)
        uptime = max(1e-6, time.monotonic() - metrics.start_time)
        return {
            "uptime_sec": uptime,
            "connected_streams": connected,
            "timings_ms": {
                "decode_avg": (
                    (metrics.decode_time / metrics.decode_calls) * 1000.0
                    if metrics.decode_calls
                    else 0.0
                ),
            },
            "rates_per_sec": {
                "decode_chunks": metrics.decode_chunks / uptime,
                "decode_tokens": metrics.decode_tokens / uptime,
            },
            "counts": {
                "decode_calls": metrics.decode_calls,
                "decode_chunks": metrics.decode_chunks,
                "failed_calls": metrics.failed_calls,
            },
        }
