"""Command-line utilities for Gatehouse operators."""
