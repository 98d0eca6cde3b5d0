"""tariffsense: HTS product classification and duty resolution."""

__all__ = ["__version__"]

__version__ = "0.3.0"
