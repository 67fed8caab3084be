"""File and media-type helpers."""
