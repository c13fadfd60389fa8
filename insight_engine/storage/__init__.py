"""Persistent storage backends"""
