"""Abuse-guarding pipeline: sanitizer, rate limiter, permission validator, admin guard."""
