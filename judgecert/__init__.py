"""
judgecert
Certification workflow for judged competition results.
"""
__version__ = "0.1.0"
