"""
nightline: narrative logic for a night-shift operator call game.

Tracks the player's decisions as weighted flags, drives calls through a
segment/response state machine, and resolves each night to one ending.
"""

__version__ = "0.1.0"
