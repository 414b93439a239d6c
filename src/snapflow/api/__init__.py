from .snapshot import run_snapshot

__all__ = [
    "run_snapshot",
]
