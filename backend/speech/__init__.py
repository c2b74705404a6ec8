# Speech module
from .output import SpeechOutputController, Pyttsx3Engine
from .capture import SpeechCaptureController, WhisperMicrophoneBackend
