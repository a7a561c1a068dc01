"""Host availability monitoring: ping probes, debounced Up/Down state, channel alerts."""

__version__ = "1.2.0"
