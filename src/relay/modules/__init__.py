"""Built-in capability packages, imported lazily by the capability registry."""
