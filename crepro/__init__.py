"""crepro — turns exec streams into standalone C reproducer programs."""

__version__ = "0.1.0"
