"""
Utility helpers: XML body conversion and structured logging.
"""
