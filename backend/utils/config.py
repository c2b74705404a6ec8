"""
Configuration settings for the interview session service.
All settings can be overridden via environment variables.
"""
import os
from dataclasses import dataclass, field


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class SessionConfig:
    """Interview session flow configuration."""
    default_timer_sec: int = field(default_factory=lambda: int(os.getenv("INTERVIEW_TIMER_SEC", "90")))

    # Question generation bounds
    default_question_count: int = 7
    max_questions: int = 20

    # Optional automation, both off by default
    auto_advance_on_expiry: bool = field(default_factory=lambda: _env_bool("INTERVIEW_AUTO_ADVANCE", False))
    auto_start_after_narration: bool = field(default_factory=lambda: _env_bool("INTERVIEW_AUTO_START", False))

    # Seconds the HTTP layer waits for a queued action to be processed
    action_timeout: float = 120.0


@dataclass
class SpeechConfig:
    """Text-to-speech narration configuration."""
    language: str = field(default_factory=lambda: os.getenv("TTS_LANGUAGE", "en-US"))
    rate: int = 170  # words per minute
    volume: float = 1.0
    narration_delay: float = 0.15  # settle time before narration starts


@dataclass
class CaptureConfig:
    """Microphone capture and Whisper STT configuration."""
    model_path: str = field(default_factory=lambda: os.getenv("WHISPER_MODEL_PATH", "../models/medium"))
    device: str = field(default_factory=lambda: os.getenv("WHISPER_DEVICE", "cuda"))
    compute_type: str = "float16"
    language: str = "en"

    sample_rate: int = 16000
    channels: int = 1
    partial_interval: float = 3.0  # seconds between live transcription passes
    recordings_dir: str = field(default_factory=lambda: os.getenv("RECORDINGS_DIR", "./recordings"))


@dataclass
class ApiConfig:
    """Question generation / grading server configuration."""
    base_url: str = field(default_factory=lambda: os.getenv("INTERVIEW_API_BASE", "http://localhost:8080"))
    healthz_endpoint: str = "/healthz"
    generate_endpoint: str = "/generate-questions"
    grade_endpoint: str = "/grade"
    timeout: int = 60


class Config:
    """Main configuration class combining all config sections."""

    def __init__(self):
        self.session = SessionConfig()
        self.speech = SpeechConfig()
        self.capture = CaptureConfig()
        self.api = ApiConfig()

    @classmethod
    def from_env(cls) -> "Config":
        """Create config from environment variables."""
        return cls()


# Global config instance
config = Config.from_env()
