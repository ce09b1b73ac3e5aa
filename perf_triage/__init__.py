"""
Point-in-time server diagnostics: sample resource counters, flag bottlenecks against fixed thresholds,
and optionally open a support case with the report attached.
"""

__all__ = ["cli", "collectors", "diagnostics", "report", "runner", "sampling", "support"]
__version__ = "0.1.0"
