"""Operational scripts: batch rescoring, demo data and log formatting."""
