"""
Markup Tool Package

Resolves invoice markups for billing transactions.
Selects the most specific applicable markup rule per transaction and computes
the billed amount (cost + markup) with deterministic currency rounding.
"""

__version__ = "1.0.0"
