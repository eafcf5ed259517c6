"""fundledger: investor capital, financial years and profit distribution back office."""

__version__ = "1.0.0"
