"""
Browser-style XMLHttpRequest for Python.

This package emulates the browser request object: readiness states,
lifecycle events, typed responses and synchronous sends, over httpx for
the network and the local filesystem for file URLs.
"""

from xmlhttprequest.xhr import XMLHttpRequest

__all__ = ["XMLHttpRequest"]
