"""Wake-on-LAN HTTP Proxy

A Python service that forwards HTTP requests to a primary destination,
waking auxiliary backends via Wake-on-LAN when they appear to be offline.
"""

__version__ = "1.0.0"
__author__ = "WoL HTTP Proxy"
