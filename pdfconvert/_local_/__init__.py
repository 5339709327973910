"""
Local conversion module for the PDF converter.

This module contains the in-process rendering engine used when no external
converter is configured.
"""

from .renderer import ConversionResult, DocumentConverter, PdfImageRenderer

__all__ = ['ConversionResult', 'DocumentConverter', 'PdfImageRenderer']
