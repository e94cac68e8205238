"""Quality-gated pipeline that turns design assets into field-mapped UI modules."""

__version__ = "0.1.0"
