"""essh - encrypted SSH credential store and SCP client."""

__version__ = "0.3.0"
