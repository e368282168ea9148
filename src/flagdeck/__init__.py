"""
Flagdeck - feature flag management with an in-process distribution cache.

Applications own flags and tags through an authenticated management API;
client SDKs read an application's enabled flags by access key.
"""

__version__ = "1.0.0"
