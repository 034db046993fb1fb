"""ptychat — assistant CLI sessions in PTYs, streamed as terminal data and chat."""

__version__ = "0.1.0"
