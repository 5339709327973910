"""
PDF conversion request orchestrator.

Authenticates callers, validates signed object-storage URLs, downloads the
source PDF, renders its pages to PNG and uploads them, then notifies an
optional webhook.
"""

__version__ = "1.0.0"
