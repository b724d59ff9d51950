"""ClaimGate — claim verification workflow and session/role authorization gate."""

__version__ = "0.1.0"
