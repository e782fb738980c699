"""
Campaign Experiments - A/B Testing Engine for Marketplace Campaigns

Allocates traffic across campaign variants, accumulates event counters
under concurrent writers, and decides a winner with a significance test
under a strict test lifecycle.
"""

__version__ = "1.0.0"
__author__ = "Campaign Experiments"
