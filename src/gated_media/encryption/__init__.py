"""AES-256-GCM envelope codec and key-material records."""
