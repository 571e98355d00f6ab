import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Sequence

import numpy as np
import onnxruntime as ort

from lstm_transducer.config import ModelConfig
from lstm_transducer.model.metadata import format_metadata

logger = logging.getLogger(__name__)


class ExecutionError(RuntimeError):
    """A graph execution failed inside the runtime."""


@dataclass(frozen=True)
class ModelHandle:
    session: ort.InferenceSession
    input_names: tuple[str, ...]
    output_names: tuple[str, ...]
    metadata: Mapping[str, str] = field(default_factory=dict)
    tag: str = "model"

    def run(self, inputs: Sequence[np.ndarray]) -> list[np.ndarray]:
        if len(inputs) != len(self.input_names):
            raise ExecutionError(
                f"{self.tag} expects {len(self.input_names)} inputs, "
                f"got {len(inputs)}"
            )
        feed = dict(zip(self.input_names, inputs))
        try:
            return self.session.run(list(self.output_names), feed)
        except Exception as exc:
            raise ExecutionError(f"{self.tag} execution failed: {exc}") from exc


def build_session_options(config: ModelConfig) -> ort.SessionOptions:
    so = ort.SessionOptions()
    so.execution_mode = ort.ExecutionMode.ORT_SEQUENTIAL
    so.intra_op_num_threads = config.intra_op_threads
    so.inter_op_num_threads = config.inter_op_threads
    so.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
    return so


def select_providers(provider: str) -> list[str]:
    if provider == "cuda":
        if "CUDAExecutionProvider" in ort.get_available_providers():
            return ["CUDAExecutionProvider", "CPUExecutionProvider"]
        logger.warning("CUDA provider requested but not available; using CPU.")
    return ["CPUExecutionProvider"]


def load_model(path: str | Path, config: ModelConfig, tag: str) -> ModelHandle:
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"{tag} model not found: {path}")

    session = ort.InferenceSession(
        path.as_posix(),
        sess_options=build_session_options(config),
        providers=select_providers(config.provider),
    )
    input_names = tuple(node.name for node in session.get_inputs())
    output_names = tuple(node.name for node in session.get_outputs())
    metadata = dict(session.get_modelmeta().custom_metadata_map)

    if config.debug:
        logger.info("---%s---\n%s", tag, format_metadata(metadata))
        logger.info("%s inputs=%s outputs=%s", tag, input_names, output_names)

    return ModelHandle(
        session=session,
        input_names=input_names,
        output_names=output_names,
        metadata=metadata,
        tag=tag,
    )
