"""
aistack - keeps a local AI service stack running.

Probes the ports of a fixed set of local services (Ollama, faster-whisper,
Piper TTS, EasyOCR wrappers), starts the missing ones as detached background
processes, and reports their health.
"""

__version__ = "0.1.0"
