"""Test doubles for the video source, model manager and extractor."""
import time

import numpy as np

from skinrisk.errors import CameraBusy


class DummySource:
    def __init__(self, ready=True, start_error=None, gate=None, poll_delay=0.0):
        self.ready = ready
        self.start_error = start_error
        self.gate = gate              # asyncio.Event that holds start_capture open
        self.poll_delay = poll_delay  # blocking sleep inside frame_ready
        self.active = False
        self.starts = 0
        self.stops = 0
    async def start_capture(self):
        if self.gate is not None:
            await self.gate.wait()
        if self.start_error is not None:
            raise self.start_error
        if self.active:
            raise CameraBusy()
        self.starts += 1
        self.active = True
    def stop_capture(self):
        if self.active:
            self.stops += 1
        self.active = False
    def frame_ready(self):
        if self.poll_delay:
            time.sleep(self.poll_delay)
        return self.active and self.ready
    def grab_frame(self):
        return np.full((120, 160, 3), 128, dtype=np.uint8) if self.active else None


class DummyModels:
    def __init__(self, error=None, gate=None):
        self.error = error
        self.gate = gate
        self.calls = 0
    async def ensure_loaded(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return "resources"


class ScriptedExtractor:
    """Returns (or raises) the scripted outcomes in order."""
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []
    def __call__(self, frame, resources, settings):
        self.calls.append((frame.shape, resources))
        out = self.outcomes.pop(0)
        if isinstance(out, Exception):
            raise out
        return out
