"""
Shared state for the PassBook API.

Holds the processor every blueprint works against. It is built lazily
from the environment, or injected with set_processor() by the app factory
and by tests.
"""

import threading

from config import PassBookConfig, build_processor
from processor import PassBookProcessor

_processor: PassBookProcessor | None = None
_lock = threading.Lock()


def get_processor() -> PassBookProcessor:
    global _processor
    with _lock:
        if _processor is None:
            _processor = build_processor(PassBookConfig.from_env())
        return _processor


def set_processor(processor: PassBookProcessor | None) -> None:
    """Replace the shared processor (None resets to lazy construction)."""
    global _processor
    with _lock:
        _processor = processor
