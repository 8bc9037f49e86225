"""
Configuration for the skin analysis engine.
"""
from pydantic import BaseModel
import os

class Settings(BaseModel):
    """
    Runtime settings with environment-variable overrides.
    """
    DEVICE: str = (os.getenv("DEVICE", "cpu") or "cpu")

    CAMERA_INDEX: int = int(os.getenv("CAMERA_INDEX", "0"))
    CAMERA_WIDTH: int = int(os.getenv("CAMERA_WIDTH", "640"))
    CAMERA_HEIGHT: int = int(os.getenv("CAMERA_HEIGHT", "480"))

    MODEL_DIR: str | None = os.getenv("MODEL_DIR") or None
    FACE_MODEL: str = os.getenv("FACE_MODEL", "haarcascade_frontalface_default.xml")
    FEATURE_MODEL: str = os.getenv("FEATURE_MODEL", "haarcascade_eye.xml")
    FACE_MIN_SIZE: int = int(os.getenv("FACE_MIN_SIZE", "64"))
    FACE_SCALE_FACTOR: float = float(os.getenv("FACE_SCALE_FACTOR", "1.1"))
    FACE_MIN_NEIGHBORS: int = int(os.getenv("FACE_MIN_NEIGHBORS", "5"))

    FRAME_POLL_INTERVAL: float = float(os.getenv("FRAME_POLL_INTERVAL", "0.1"))
    SETTLE_DELAY: float = float(os.getenv("SETTLE_DELAY", "1.5"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    def __init__(self, **data):
        super().__init__(**data)
        # Normalize DEVICE: strip comments/extra words, lower-case, validate
        dev = (self.DEVICE or "cpu").strip().split()[0].lower() if (self.DEVICE or "").strip() else "cpu"
        if dev not in ("cpu", "opencl"):
            dev = "cpu"
        object.__setattr__(self, "DEVICE", dev)
        object.__setattr__(self, "LOG_LEVEL", (self.LOG_LEVEL or "INFO").strip().upper())
