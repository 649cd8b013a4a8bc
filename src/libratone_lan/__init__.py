"""Local network control of Libratone wireless speakers.

Discovers speakers over multicast, speaks their binary UDP command protocol and
keeps a live mirror of each speaker's state.
"""

__version__ = "0.1.0"
