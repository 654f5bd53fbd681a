"""
BlockOS - time-blocking engine.

Plans discrete blocks of time, reconciles them with external calendars and
recurring routines, decides which block is current, and drives the single
execution attempt (session) against it.
"""

__version__ = "0.4.0"
