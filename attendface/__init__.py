"""Face-verification attendance pipeline."""

__version__ = "0.1.0"
