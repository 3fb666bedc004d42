"""Sim backends, one module per supported sim.

Each module provides a ``Simetry`` implementation with an async ``connect``
classmethod that retries until its sim shows up.
"""
