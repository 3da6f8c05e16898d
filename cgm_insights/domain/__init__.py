"""Immutable event and derived-record models."""
