"""
Run Monitoring Module
=====================

Run outcome summaries and their daily report files.
"""

from .run_report import RunReport, RunReportWriter

__all__ = ['RunReport', 'RunReportWriter']
