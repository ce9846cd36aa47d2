"""Filter validation, send-thread iteration, gateway discovery and progress monitoring for network scans."""

__version__ = "0.1.0"