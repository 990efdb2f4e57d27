"""Incremental bank transaction sync with rule-based categorization."""
