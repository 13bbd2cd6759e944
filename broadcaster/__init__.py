"""
Publish broadcast engine.

Publishes one authoring request to LinkedIn, X and Mastodon on behalf of a
user, managing each platform's OAuth2 credentials along the way.
"""

__version__ = "1.0.0"
