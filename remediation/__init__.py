"""Compliance flag remediation and verification workflow."""

__version__ = "1.0.0"
