"""newsmerge: content resolution for recurring news-style items."""

__version__ = "0.1.0"
