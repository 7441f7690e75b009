"""rigsync: keeps a mining rig's directive in sync with its control server."""

__version__ = "0.1.0"
