"""
Analysis services for the application.

This package contains the analyzers (glucose statistics, meal correlation,
food impact, insulin and sensor analysis), the insight rules, the row
ingestion boundary and the engine that ties them together.
"""

from .correlation import correlate, correlate_with
from .engine import AnalysisReport, analyze, analyze_rows
from .food_impact import aggregate, classify_spike, low_spikers, summarize_meals, top_spikers
from .ingest import ParsedBatch, Result
from .insights import compose, highest_severity
from .insulin import analyze_doses, detect_stacking, insulin_on_board
from .sensors import analyze_sensors
from .statistics import summarize

__all__ = [
    "AnalysisReport",
    "analyze",
    "analyze_rows",
    "summarize",
    "correlate",
    "correlate_with",
    "aggregate",
    "top_spikers",
    "low_spikers",
    "classify_spike",
    "summarize_meals",
    "analyze_doses",
    "detect_stacking",
    "insulin_on_board",
    "analyze_sensors",
    "compose",
    "highest_severity",
    "ParsedBatch",
    "Result",
]
