"""Query classification and hybrid vector/graph retrieval."""
