"""TCP group chat with a capped room, waiting queue, colours and history, plus a client launcher."""

__version__ = "0.1.0"
__all__ = ["protocol", "server", "client", "pipeserver"]