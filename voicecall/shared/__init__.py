"""Cross-cutting support: configuration and log redaction."""
