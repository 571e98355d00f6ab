from dataclasses import dataclass, field
from typing import Literal


@dataclass(frozen=True)
class ModelConfig:
    encoder: str
    decoder: str
    joiner: str
    tokens: str | None = None
    num_threads: int = 1
    inter_op_num_threads: int | None = None
    provider: Literal["cpu", "cuda"] = "cpu"
    debug: bool = False

    def __post_init__(self):
        if self.num_threads <= 0:
            raise ValueError(f"num_threads must be positive, got {self.num_threads}")
        if self.inter_op_num_threads is not None and self.inter_op_num_threads <= 0:
            raise ValueError(
                "inter_op_num_threads must be positive, "
                f"got {self.inter_op_num_threads}"
            )
        if self.provider not in ("cpu", "cuda"):
            raise ValueError(f"Unknown provider: {self.provider}")

    @property
    def intra_op_threads(self) -> int:
        return self.num_threads

    @property
    def inter_op_threads(self) -> int:
        if self.inter_op_num_threads is None:
            return self.num_threads
        return self.inter_op_num_threads


@dataclass
class FeatureConfig:
    sample_rate: int = 16000
    feature_dim: int = 80
    window_size: float = 0.025
    window_stride: float = 0.01
    preemph: float = 0.97
    dither: float = 0.0
    log_zero_guard_value: float = 2**-24


@dataclass
class EngineConfig:
    model: ModelConfig
    features: FeatureConfig = field(default_factory=FeatureConfig)
    max_num_streams: int = 32
    decode_batch_size: int = 8
    tail_padding_frames: int | None = None
    shape_log_path: str | None = None

    def __post_init__(self):
        if self.max_num_streams <= 0:
            raise ValueError("max_num_streams must be positive")
        if self.decode_batch_size <= 0:
            raise ValueError("decode_batch_size must be positive")
        if self.tail_padding_frames is not None and self.tail_padding_frames < 0:
            raise ValueError("tail_padding_frames must be non-negative")
