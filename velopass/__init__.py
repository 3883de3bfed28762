"""Trip-log and pricing-page analysis that recommends a bike-share membership or pay-per-ride."""

__version__ = "0.1.0"
