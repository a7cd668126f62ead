"""
IMPRO - Improv Match Scoreboard

Keeps scoreboard displays and control panels in sync with one authoritative
match state per room, over Socket.IO.
"""

__version__ = "1.0.0"
__author__ = "IMPRO Contributors"
