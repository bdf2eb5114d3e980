"""Ingestion and semantic retrieval over a Cardano / Aiken / Midnight knowledge base."""

__version__ = "0.1.0"
