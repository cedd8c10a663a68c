"""
Core Layer

Domain models and services for real-time exercise form analysis.
"""
