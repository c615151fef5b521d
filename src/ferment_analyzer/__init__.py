"""
Ferment Analyzer - fermentation batch analysis.

Turns a stream of gravity/temperature readings into phase-advancement
decisions, anomaly alerts and compact daily summaries.
"""

from ferment_analyzer.utils.constants import APP_VERSION

__version__ = APP_VERSION
