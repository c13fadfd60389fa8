"""
Confidence-calibrated insight synthesis and lineage engine.

Turns wizard session history into one recommendation whose wording never
claims more certainty than the data supports, and records the evidence
behind every recommendation it emits.
"""

__version__ = "0.1.0"
