"""Homework scan and chat companion: capture a worksheet, analyze it, talk it through."""

__version__ = "0.1.0"
