"""Bundled question dataset and topic tables (read-only package data)."""
