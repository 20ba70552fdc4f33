"""Trade journal backend: fan-out, settlement and dashboards on Firestore."""

__version__ = "0.1.0"
