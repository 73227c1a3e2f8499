"""Graph and vector storage backends."""
