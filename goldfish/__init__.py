"""goldfish: web administration UI backend for HashiCorp Vault."""

__version__ = "0.6.0"
