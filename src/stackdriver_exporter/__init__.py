"""
Stackdriver Exporter - Google Cloud Monitoring metrics for Prometheus.

This package exposes Google Cloud Monitoring (Stackdriver) time series in the
Prometheus exposition format, collecting them on every scrape.
"""

__version__ = "1.0.0"
__author__ = "Stackdriver Exporter Team"
