"""Core configuration, time and credential helpers."""
