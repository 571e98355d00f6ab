import math

import librosa
import numpy as np
import torch

from lstm_transducer.config import FeatureConfig


class FeatureState:
    """Per-stream leftover samples not yet covered by an emitted frame."""

    def __init__(self):
        self.samples = np.empty((0,), dtype=np.float32)
        self.num_frames = 0
        # Last raw sample of the previous push, for pre-emphasis continuity.
        self.last_sample = 0.0


class FeatureExtractor:
    """Streaming log-mel filterbank.

    Frames are not centred: frame ``i`` covers samples
    ``[i * hop_length, i * hop_length + win_length)``, so a frame is emitted
    as soon as its last sample arrives and never changes afterwards.
    """

    def __init__(self, config: FeatureConfig | None = None):
        config = config or FeatureConfig()
        self.config = config
        self.sampling_rate = config.sample_rate
        self.feature_size = config.feature_dim
        self.win_length = int(config.window_size * config.sample_rate)
        self.hop_length = int(config.window_stride * config.sample_rate)
        self.n_fft = 2 ** math.ceil(math.log2(self.win_length))
        self.preemph = config.preemph
        self.dither = config.dither
        self.log_zero_guard_value = float(config.log_zero_guard_value)

        self.window = torch.hann_window(self.win_length, periodic=False)
        fb = librosa.filters.mel(
            sr=config.sample_rate,
            n_fft=self.n_fft,
            n_mels=config.feature_dim,
            fmin=20.0,
            fmax=config.sample_rate / 2,
            htk=True,
            norm=None,
        ).astype(np.float32)
        self.fb = torch.from_numpy(fb)

    def num_frames(self, num_samples: int) -> int:
        if num_samples < self.win_length:
            return 0
        return 1 + (num_samples - self.win_length) // self.hop_length

    def _compute_features_tensor(self, x: torch.Tensor) -> torch.Tensor:
        frames = x.unfold(-1, self.win_length, self.hop_length)
        if self.dither > 0:
            frames = frames + torch.randn_like(frames) * self.dither
        frames = frames - frames.mean(dim=-1, keepdim=True)

        frames = frames * self.window
        spec = torch.fft.rfft(frames, n=self.n_fft)
        power = spec.real.pow(2) + spec.imag.pow(2)

        mel = torch.matmul(power, self.fb.T)
        return torch.log(mel + self.log_zero_guard_value)

    def __call__(self, audio: np.ndarray) -> np.ndarray:
        """Features for a complete utterance, shape (frames, feature_dim)."""
        state = FeatureState()
        return self.push(audio, state)

    def push(self, samples: np.ndarray, state: FeatureState) -> np.ndarray:
        """Append samples and return any newly complete frames."""
        samples = np.asarray(samples, dtype=np.float32).reshape(-1)
        if samples.size:
            emphasized = np.empty_like(samples)
            emphasized[0] = samples[0] - self.preemph * state.last_sample
            emphasized[1:] = samples[1:] - self.preemph * samples[:-1]
            state.last_sample = float(samples[-1])
            state.samples = np.concatenate([state.samples, emphasized])

        frame_count = self.num_frames(state.samples.size)
        if frame_count == 0:
            return np.empty((0, self.feature_size), dtype=np.float32)

        used = (frame_count - 1) * self.hop_length + self.win_length
        with torch.inference_mode():
            features = self._compute_features_tensor(
                torch.from_numpy(state.samples[:used].copy())
            )
        state.samples = state.samples[frame_count * self.hop_length :]
        state.num_frames += frame_count
        return features.numpy().astype(np.float32, copy=False)
