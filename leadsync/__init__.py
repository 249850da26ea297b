"""
leadsync
Form submission to lead reconciliation pipeline
"""
__version__ = "1.0.0"
