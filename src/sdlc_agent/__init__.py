"""Issue-driven development agent: queue consumer, pipeline and supervisor."""

__version__ = "0.1.0"
