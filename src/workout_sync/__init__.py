"""workout-sync: reconcile an on-device workout store with a remote document store."""

__version__ = "0.1.0"
