"""network-intel: knowledge graph of organizations and people with enrichment, ranking and
progressive retrieval."""

__all__ = ["__version__"]

__version__ = "0.1.0"
