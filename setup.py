"""Setup for FocusPact.

Install for development:
    pip install -e ".[test]"
"""

from setuptools import setup, find_namespace_packages

setup(
    name="FocusPact",
    version="0.1.0",
    description="Derived-state engine for a focus timer: stats, challenges and accountability pacts",
    packages=find_namespace_packages(include=["focuspact", "focuspact.*"]),
    python_requires=">=3.10",
    install_requires=[
        "SQLAlchemy>=2.0",
        "PyQt6>=6.5",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "focuspact-worker=focuspact.__main__:main",
        ],
    },
)
