from . import update_results  # noqa: F401

__all__ = [
    "update_results",
]
