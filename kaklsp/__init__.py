"""Language Server Protocol client core for the Kakoune editor: session state, request batching, capability checks and request routing."""

__version__ = "0.1.0"