"""StakeScope — validator telemetry ingestion and scoring.

Fetches vote-account telemetry from a Solana JSON-RPC endpoint, scores each
validator (performance, risk, yield) and reconciles the results into a
relational store for a presentation layer to query.
"""

__version__ = "0.3.0"
