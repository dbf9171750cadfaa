"""
College Orbit Utilities Package

Contains:
- cache: TTL cache with Redis backing for leaderboard snapshots
"""
