"""modelgate: a failover gateway in front of Gemini, OpenAI and Ollama."""

__version__ = "0.1.0"
