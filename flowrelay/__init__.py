"""flowrelay — NetFlow v9/IPFIX 필터링 릴레이."""

__version__ = "0.1.0"
