"""nixlink - a small synchronous client for the Nix daemon protocol."""

__version__ = "0.1.0"
