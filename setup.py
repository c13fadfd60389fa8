"""
Insight Engine Build Configuration

Usage:
    pip install -e .            # Install the engine and its runtime stack
    pip install -e ".[test]"    # Plus the test tooling
"""

from setuptools import setup, find_packages

setup(
    name="insight-engine",
    version="0.1.0",
    description="Confidence-calibrated insight synthesis with recommendation lineage",
    packages=find_packages(include=["insight_engine", "insight_engine.*"]),
    install_requires=[
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
        "loguru>=0.7",
        "aiosqlite>=0.19",
        "fastapi>=0.100",
        "httpx>=0.25",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
        ],
    },
    python_requires=">=3.11",
)
