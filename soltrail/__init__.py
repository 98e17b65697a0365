"""soltrail — Solana transaction-history scanner and SPL token sender."""

__version__ = "0.1.0"
