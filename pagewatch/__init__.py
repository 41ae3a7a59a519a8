"""pagewatch - watch a web page until the order button shows up."""

__version__ = "0.1.0"
