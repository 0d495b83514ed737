"""
Core Services

This module contains the pure shipment rules (guards, transitions, totals,
reconciliation, filtering) and shared helpers.
"""

from .tool import *
