"""Discovery and management of iOS simulators, offline Android emulators and remote devices."""

__version__ = "0.1.0"