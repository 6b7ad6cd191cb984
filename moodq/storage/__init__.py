"""Storage - insights cache and records sources"""
