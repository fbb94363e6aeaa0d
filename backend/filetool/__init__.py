"""
filetool: single-artifact transformation service.

Accepts one uploaded file, classifies its real type, routes it to a
transformation backend and streams the result back under bounded
system-wide concurrency.
"""

__version__ = "0.1.0"
