"""Fidelio loyalty ingestion service."""
