"""TTL cache store and IPFS retrieval proxy."""
