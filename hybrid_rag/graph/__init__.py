"""Knowledge graph construction from chunked documents."""
