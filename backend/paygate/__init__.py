"""
PayGate - merchant payment gateway backend.
"""
__version__ = "0.1.0"
