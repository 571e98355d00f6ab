from dataclasses import dataclass, field
from typing import Sequence

import numpy as np
from torch.profiler import record_function

from lstm_transducer.model.transducer import LstmTransducerModel


@dataclass
class Hypothesis:
    """Token ids recognised so far, left-padded with ``context_size`` blanks."""

    context_size: int
    blank_id: int = 0
    ys: list[int] = field(default_factory=list)
    timestamps: list[int] = field(default_factory=list)
    num_trailing_blanks: int = 0
    decoder_out: np.ndarray | None = None

    def __post_init__(self):
        if not self.ys:
            self.ys = [self.blank_id] * self.context_size

    @property
    def tokens(self) -> list[int]:
        return self.ys[self.context_size :]

    def append(self, token_id: int, frame: int) -> None:
        self.ys.append(int(token_id))
        self.timestamps.append(int(frame))
        self.num_trailing_blanks = 0
        self.decoder_out = None


def _refresh_decoder_out(
    model: LstmTransducerModel, hyps: Sequence[Hypothesis], rows: list[int]
) -> None:
    if not rows:
        return
    decoder_input = model.build_decoder_input_batch([hyps[r].ys for r in rows])
    decoder_out = model.run_decoder(decoder_input)
    for i, row in enumerate(rows):
        hyps[row].decoder_out = decoder_out[i : i + 1]


def greedy_search(
    model: LstmTransducerModel,
    encoder_out: np.ndarray,
    hyps: Sequence[Hypothesis],
    frame_offsets: Sequence[int],
) -> list[list[int]]:
    """Extend each hypothesis with at most one token per encoder frame.

    Args:
        encoder_out: array of shape (N, T', joiner_dim).
        hyps: N hypotheses, modified in place.
        frame_offsets: index of the first frame of this chunk, per stream.

    Returns:
        The tokens appended to each hypothesis by this call.
    """
    batch_size, num_frames = encoder_out.shape[:2]
    if batch_size != len(hyps):
        raise ValueError(f"encoder_out batch {batch_size} != {len(hyps)} hypotheses")

    new_tokens: list[list[int]] = [[] for _ in hyps]
    with record_function("greedy_search"):
        _refresh_decoder_out(
            model,
            hyps,
            [i for i, hyp in enumerate(hyps) if hyp.decoder_out is None],
        )
        decoder_out = np.concatenate([hyp.decoder_out for hyp in hyps], axis=0)

        for t in range(num_frames):
            cur_encoder_out = np.ascontiguousarray(encoder_out[:, t, :])
            logits = model.run_joiner(cur_encoder_out, decoder_out)
            ids = logits.reshape(batch_size, -1).argmax(axis=-1)

            emitted: list[int] = []
            for row, token_id in enumerate(ids.tolist()):
                hyp = hyps[row]
                if token_id == model.blank_id:
                    hyp.num_trailing_blanks += 1
                    continue
                hyp.append(token_id, frame_offsets[row] + t)
                new_tokens[row].append(token_id)
                emitted.append(row)

            if emitted:
                _refresh_decoder_out(model, hyps, emitted)
                decoder_out = np.concatenate([hyp.decoder_out for hyp in hyps], axis=0)

    return new_tokens
