"""
datastream: network simulation core for the Data Stream idle game.

Nodes produce Data, connections carry it to the global pool with losses,
bandwidth overload erodes integrity, and an integrity collapse crashes
the network back to its Core.
"""

__version__ = "0.1.0"
