"""crabo: link snapshot service with a robots-compliant fetch gate."""

__version__ = "0.3.1"
