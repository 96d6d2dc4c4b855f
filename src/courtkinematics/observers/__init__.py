from .observable import Listener, Observable

__all__ = [
    "Listener",
    "Observable",
]
