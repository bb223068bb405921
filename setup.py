"""
Setup script for Convergence Core
"""
from setuptools import setup, find_packages


setup(
    name="convergence-core",
    version="1.0.0",
    description="Task orchestration, service registry and observability for agent runtimes",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=[
        "aiohttp>=3.8",
        "fastapi>=0.100",
        "psutil>=5.9",
        "pydantic>=2.0",
        "pyyaml>=6.0",
        "rich>=13.0",
        "uvicorn>=0.22",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
            "httpx>=0.24",
        ],
    },
    entry_points={
        "console_scripts": [
            "convergence=convergence_core.cli:main",
        ],
    },
    zip_safe=False,
)
