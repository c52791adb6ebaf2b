"""Compliance documents (EU MDR Annex XIII statements)."""
