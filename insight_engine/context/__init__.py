"""Analysis context aggregation and hashing"""
