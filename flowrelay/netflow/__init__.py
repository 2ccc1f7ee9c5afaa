"""NetFlow v9 / IPFIX 코덱."""
