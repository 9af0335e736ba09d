"""
Setup configuration for creativetracker package.
"""

from setuptools import setup, find_packages

setup(
    name="creativetracker",
    version="1.0.0",
    description="Competitor creative intelligence analytics engine",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "supabase>=2.0.0",
        "pydantic>=2.0.0",
        "python-dotenv>=1.0.0",
        "PyYAML>=6.0",
        "click>=8.1.0",
        "logfire>=2.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "creativetracker=creativetracker.cli.main:cli",
        ],
    },
)
