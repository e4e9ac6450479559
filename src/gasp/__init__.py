"""
GASP: Grouped Apnea & Sustained-limitation Profiler

Apnea cluster and false-negative analysis for OSCAR CPAP/APAP Details exports.
"""

from gasp.analysis.service import analyze_details
from gasp.worker import AnalyticsWorker

__all__ = ["AnalyticsWorker", "analyze_details"]
