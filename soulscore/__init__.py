"""
SoulScore - asynchronous scoring pipeline.

Computes behavioral uniqueness and content originality per user through a
database-backed priority job queue, aggregates batch run telemetry, and ranks
weekly match lists from the committed scores.
"""

__version__ = "1.0.0"
