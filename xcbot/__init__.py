"""
XContest Flight Notification Bot
================================
A Telegram bot that follows paragliding pilots on the XContest leaderboard
and notifies subscribers as soon as a followed pilot publishes a new flight.
"""

__version__ = "1.0.0"
__author__ = "XC Bot"
