"""
API Routes Package
"""
from . import subscriptions
