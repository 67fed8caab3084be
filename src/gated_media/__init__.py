"""Gated media: caching IPFS retrieval proxy and AEAD envelope pipeline."""

__version__ = "0.1.0"
