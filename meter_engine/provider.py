from __future__ import annotations

import threading

import numpy as np

class ProviderUnavailable(RuntimeError):
    """The sample source cannot deliver data right now."""

def select_channel(block: np.ndarray, mode: str) -> np.ndarray:
    """Single-channel window out of a (frames, channels) block: left, right or mono fold-down."""
    x = np.asarray(block, dtype=np.float32)
    if x.ndim == 1:
        return x
    if mode == "left":
        return x[:, 0]
    if mode == "right":
        return x[:, 1]
    if mode == "mono":
        return x.mean(axis=1)
    raise ValueError(f"unknown channel mode {mode!r}")


class RingBuffer:
    """Latest `size` frames of a multichannel stream, written from the audio thread."""

    def __init__(self, size: int, channels: int):
        self.size = int(size)
        self.channels = int(channels)
        self._buf = np.zeros((self.size, self.channels), dtype=np.float32)
        self._pos = 0
        self._filled = 0
        self._lock = threading.Lock()

    def write(self, block: np.ndarray) -> None:
        n = block.shape[0]
        with self._lock:
            if n >= self.size:
                self._buf[:] = block[-self.size:]
                self._pos = 0
            else:
                end = self._pos + n
                if end <= self.size:
                    self._buf[self._pos:end] = block
                else:
                    first = self.size - self._pos
                    self._buf[self._pos:] = block[:first]
                    self._buf[: n - first] = block[first:]
                self._pos = (self._pos + n) % self.size
            self._filled = min(self._filled + n, self.size)

    def snapshot(self) -> np.ndarray | None:
        """Chronological copy of the buffer, or None until it has been filled once."""
        with self._lock:
            if self._filled < self.size:
                return None
            return np.concatenate((self._buf[self._pos:], self._buf[:self._pos])).copy()

    def clear(self) -> None:
        with self._lock:
            self._buf.fill(0.0)
            self._pos = 0
            self._filled = 0

