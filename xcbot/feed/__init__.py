"""Flight feed module for the XC Bot."""

from .xcontest import XContestClient, Flight, parse_feed

__all__ = ["XContestClient", "Flight", "parse_feed"]
