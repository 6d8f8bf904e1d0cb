"""Turn relay domain services: the engine, season management and config parsing.

This package holds the domain logic that HTTP routes and socket handlers
import, keeping transport concerns separated from turn rotation.
"""
