"""
Core modules for Prompt Master.

This package contains validation, rate limiting, authentication,
generation orchestration and administration.
"""
