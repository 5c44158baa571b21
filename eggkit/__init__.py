"""Service toolkit: resilient HTTP clients, layered configuration, tool runner and CLI output."""

__version__ = "0.2.0"