"""OCR processing coordinator: dispatch, webhook intake and queue monitoring."""

__version__ = "1.0.0"
