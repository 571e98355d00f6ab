"""Encoder recurrent state and the batching helpers built on it.

A ``RecurrentState`` is handed over on every encoder call: ``take()`` gives
the tensors to the caller and leaves the state object empty, so a stale
state can never be fed back by mistake.
"""

from typing import Sequence

import numpy as np

from lstm_transducer.model.metadata import ModelDimensions

BATCH_AXIS = 1


class StateConsumedError(RuntimeError):
    pass


class RecurrentState:
    __slots__ = ("_hidden", "_cell")

    def __init__(self, hidden: np.ndarray, cell: np.ndarray):
        if hidden.ndim != 3 or cell.ndim != 3:
            raise ValueError("hidden and cell must be 3-D [layers, batch, dim]")
        if hidden.shape[:2] != cell.shape[:2]:
            raise ValueError(
                f"hidden {hidden.shape} and cell {cell.shape} disagree on "
                "layers/batch"
            )
        self._hidden = hidden
        self._cell = cell

    @property
    def consumed(self) -> bool:
        return self._hidden is None

    def _check(self) -> None:
        if self._hidden is None:
            raise StateConsumedError("Recurrent state was already consumed.")

    @property
    def hidden(self) -> np.ndarray:
        self._check()
        return self._hidden

    @property
    def cell(self) -> np.ndarray:
        self._check()
        return self._cell

    @property
    def batch_size(self) -> int:
        return int(self.hidden.shape[BATCH_AXIS])

    def take(self) -> tuple[np.ndarray, np.ndarray]:
        self._check()
        hidden, cell = self._hidden, self._cell
        self._hidden = None
        self._cell = None
        return hidden, cell

    def __repr__(self) -> str:
        if self.consumed:
            return "RecurrentState(<consumed>)"
        return (
            f"RecurrentState(hidden={tuple(self._hidden.shape)}, "
            f"cell={tuple(self._cell.shape)})"
        )


def initial_state(dims: ModelDimensions) -> RecurrentState:
    hidden = np.zeros((dims.num_encoder_layers, 1, dims.d_model), dtype=np.float32)
    cell = np.zeros(
        (dims.num_encoder_layers, 1, dims.rnn_hidden_size), dtype=np.float32
    )
    return RecurrentState(hidden, cell)


def stack_states(states: Sequence[RecurrentState]) -> RecurrentState:
    if not states:
        raise ValueError("Cannot stack an empty list of states.")
    ref_h = states[0].hidden
    ref_c = states[0].cell
    for st in states[1:]:
        if (
            st.hidden.shape[0] != ref_h.shape[0]
            or st.hidden.shape[2] != ref_h.shape[2]
            or st.cell.shape[2] != ref_c.shape[2]
        ):
            raise ValueError(f"Cannot stack {st!r} with {states[0]!r}")

    taken = [st.take() for st in states]
    hidden = np.concatenate([h for h, _ in taken], axis=BATCH_AXIS)
    cell = np.concatenate([c for _, c in taken], axis=BATCH_AXIS)
    return RecurrentState(hidden, cell)


def unstack_states(state: RecurrentState) -> list[RecurrentState]:
    hidden, cell = state.take()
    batch_size = hidden.shape[BATCH_AXIS]
    split_h = np.split(hidden, batch_size, axis=BATCH_AXIS)
    split_c = np.split(cell, batch_size, axis=BATCH_AXIS)
    return [RecurrentState(h.copy(), c.copy()) for h, c in zip(split_h, split_c)]
