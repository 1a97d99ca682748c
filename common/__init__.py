"""
Shared utilities - structured logging
"""
