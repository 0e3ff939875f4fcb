"""splitmail: JMAP mail client core with split inboxes and calendar replies."""

__version__ = "0.1.0"

__all__ = ["__version__"]
