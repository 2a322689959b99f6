"""netwarden - outbound network policy enforcement and audit for dev VMs."""

__version__ = "0.1.0"
