"""Recommendation lineage (provenance) tracking"""
