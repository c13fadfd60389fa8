"""Guidance caching"""
