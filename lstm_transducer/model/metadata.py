"""Typed access to the custom metadata exported with each transducer graph.

The exporter writes every hyper-parameter the runtime needs as a decimal
string. A graph with a missing or non-positive entry cannot be driven
correctly, so reading is fail-fast: every problem is logged and the process
exits with ``SystemExit``.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping, Sequence

logger = logging.getLogger(__name__)

ENCODER_KEYS = (
    "num_encoder_layers",
    "T",
    "decode_chunk_len",
    "rnn_hidden_size",
    "d_model",
)
DECODER_KEYS = ("vocab_size", "context_size")


def positive(value: int) -> bool:
    return value > 0


def read_int(
    meta: Mapping[str, str],
    key: str,
    predicate: Callable[[int], bool] = positive,
) -> tuple[int | None, str | None]:
    """Return ``(value, None)`` on success or ``(None, reason)`` on failure."""
    raw = meta.get(key)
    if raw is None:
        return None, f"{key} does not exist in the metadata"
    try:
        value = int(str(raw).strip())
    except ValueError:
        return None, f"Invalid value {raw!r} for {key}"
    if not predicate(value):
        return None, f"Invalid value {value} for {key}"
    return value, None


def collect_dimensions(
    meta: Mapping[str, str],
    keys: Iterable[str],
    component: str,
    predicate: Callable[[int], bool] = positive,
) -> tuple[dict[str, int], list[str]]:
    values: dict[str, int] = {}
    problems: list[str] = []
    for key in keys:
        value, reason = read_int(meta, key, predicate)
        if reason is not None:
            problems.append(f"{component}: {reason}")
            continue
        values[key] = value
    return values, problems


def exit_on_problems(problems: Sequence[str]) -> None:
    if not problems:
        return
    for reason in problems:
        logger.error("%s", reason)
    raise SystemExit("Invalid model metadata: " + "; ".join(problems))


def read_dimensions(
    meta: Mapping[str, str],
    keys: Iterable[str],
    component: str,
    predicate: Callable[[int], bool] = positive,
) -> dict[str, int]:
    values, problems = collect_dimensions(meta, keys, component, predicate)
    exit_on_problems(problems)
    return values


def format_metadata(meta: Mapping[str, str]) -> str:
    return "\n".join(f"{key}={meta[key]}" for key in sorted(meta))


@dataclass(frozen=True)
class ModelDimensions:
    num_encoder_layers: int
    T: int
    decode_chunk_len: int
    rnn_hidden_size: int
    d_model: int
    vocab_size: int
    context_size: int
