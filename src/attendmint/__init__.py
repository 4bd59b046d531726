"""attendmint - ticket purchase and attendance-NFT lifecycle engine."""

__version__ = "0.1.0"
