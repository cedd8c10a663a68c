"""
Gorilla Mode Coach

Real-time exercise form analysis backend.
"""

__version__ = "1.0.0"
