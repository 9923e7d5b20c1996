"""Safe link previews and encrypted image exchange for chat clients."""

__version__ = "1.0.0"
