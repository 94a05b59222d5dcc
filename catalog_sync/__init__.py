"""WooCommerce product catalog synchronizer."""

__version__ = "0.3.0"
