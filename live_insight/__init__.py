"""
Live insight engine: real-time workshop capture-to-insight pipeline.
"""

__version__ = "0.1.0"
