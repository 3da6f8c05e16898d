"""Glucose pattern analysis for people managing diabetes.

This package contains the domain models, analyzers and insight rules,
isolated from storage and presentation so every piece is a pure function
over an immutable snapshot of events.
"""
