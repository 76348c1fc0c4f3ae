from __future__ import annotations

import numpy as np
import sounddevice as sd
from loguru import logger

from meter_engine.provider import ProviderUnavailable, RingBuffer


def list_devices():
    devices = sd.query_devices()
    hostapis = sd.query_hostapis()
    logger.info("=== Audio Devices ===")
    for idx, dev in enumerate(devices):
        name = dev.get("name")
        ins = dev.get("max_input_channels")
        api = hostapis[dev.get("hostapi")]["name"] if dev.get("hostapi") is not None else "?"
        if ins:
            print(f"[{idx:2d}] {name} | in:{ins} | default sr:{dev.get('default_samplerate')} | API:{api}")


class SoundDeviceProvider:
    """Live input stream exposing the most recent analysis window."""

    def __init__(self, *, device, sample_rate: int, channels: int, window_length: int, blocksize: int = 0):
        self.device = device
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.window_length = int(window_length)
        self.blocksize = int(blocksize)
        self.overflows = 0
        self._ring = RingBuffer(self.window_length, self.channels)
        self._stream = None

    def _callback(self, indata, frames, time_info, status):
        if status.input_overflow:
            self.overflows += 1
        self._ring.write(indata)

    def start(self):
        try:
            sd.check_input_settings(device=self.device, samplerate=self.sample_rate,
                                    channels=self.channels, dtype="float32")
            self._stream = sd.InputStream(
                device=self.device,
                samplerate=self.sample_rate,
                blocksize=self.blocksize,
                channels=self.channels,
                dtype="float32",
                callback=self._callback,
            )
            self._stream.start()
        except Exception as e:
            self._stream = None
            raise ProviderUnavailable(f"cannot open input device {self.device}: {e}")
        logger.info(f"Input stream open: device={self.device} sr={self.sample_rate} ch={self.channels}")

    def stop(self):
        if self._stream is None:
            return
        try:
            self._stream.stop()
        finally:
            self._stream.close()
            self._stream = None
            self._ring.clear()

    @property
    def active(self) -> bool:
        return self._stream is not None and bool(self._stream.active)

    def read_block(self) -> np.ndarray | None:
        if not self.active:
            raise ProviderUnavailable("input stream is not running")
        return self._ring.snapshot()
