"""Guidance pipeline orchestration"""
