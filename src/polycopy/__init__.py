"""polycopy - Polymarket trade observer with position liquidation and redemption."""

__version__ = "0.1.0"
