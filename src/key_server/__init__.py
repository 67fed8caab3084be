"""aiohttp application serving the retrieval proxy and key boundary."""
