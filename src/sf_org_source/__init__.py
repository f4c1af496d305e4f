"""Secure Salesforce CLI execution and cached org source retrieval."""

__version__ = "0.1.0"
