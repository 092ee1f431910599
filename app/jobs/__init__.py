from . import update_predictions  # noqa: F401

__all__ = [
    "update_predictions",
]
