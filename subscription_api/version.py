"""Version information for the subscription service."""

__version__ = "0.1.0"
APPLICATION_NAME = "subscription-api"
