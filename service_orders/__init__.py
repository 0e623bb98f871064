"""
Orders Service for optics shop billing.
"""
