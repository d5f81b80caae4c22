"""tremote: Transmission RPC transport and trust negotiation."""

__version__ = "0.1.0"
