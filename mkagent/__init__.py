"""Host monitoring agent toolkit: configuration, plugin commands, durations and posting rules."""

__version__ = "0.83.0"