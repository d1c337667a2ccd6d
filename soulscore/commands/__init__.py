# soulscore/commands/__init__.py
"""
Command-line utilities for SoulScore.

Commands:
    - run_batch: Start a batch run and drain it with a worker pool

Usage:
    python -m soulscore.commands.run_batch --run-type scheduled_daily --workers 4
"""
