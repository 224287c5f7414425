"""Configuration parsing helpers."""
