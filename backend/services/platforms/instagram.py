"""
BharatCRM - Instagram Lead Ads
Served by the same Graph API lead forms and leadgen webhooks as Facebook.
"""

from services.platforms.facebook import FacebookClient


class InstagramClient(FacebookClient):
    platform = "instagram"
    name = "Instagram Lead Ads"
