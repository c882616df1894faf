"""Knowledge Chat: session and quota orchestration for the AI knowledge chat."""

__version__ = "0.1.0"
