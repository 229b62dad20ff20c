"""Collectors turning Cloud Monitoring time series into Prometheus metrics."""
