"""Adapters connecting the core to processes, networks and frameworks."""
