"""Confidence scoring, validation and tone calibration"""
