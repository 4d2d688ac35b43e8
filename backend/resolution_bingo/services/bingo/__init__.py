"""Bingo domain services: card generation, cell lifecycle, review voting, leaderboard.

This package contains the game-state engine that HTTP routes and socket
handlers call into, keeping transport concerns separated from the rules
of the game.
"""
