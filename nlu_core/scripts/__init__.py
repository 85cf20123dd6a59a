"""
NLU Core Scripts
================

Command line entry points:
- train_bot.py: mount a bot from a definitions file, train it and run predictions
"""

from pathlib import Path

SCRIPTS_DIR = Path(__file__).parent

__all__ = ["SCRIPTS_DIR"]
