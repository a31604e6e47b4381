"""House and device state model, point writer, token source and snapshot builders."""

__version__ = "0.1.0"
__all__ = ["dto", "influx", "model", "tokensource"]