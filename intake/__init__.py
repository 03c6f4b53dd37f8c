"""
Spreadsheet sales-order intake: deterministic extraction plus reviewer consensus.
"""

__version__ = "1.1.0"
