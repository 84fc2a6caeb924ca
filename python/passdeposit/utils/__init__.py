"""
Utility functions and classes used across the deposit services
"""
from .logging import blab, logged, BLAB
from .cache import KeyedSets
