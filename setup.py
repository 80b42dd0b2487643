from setuptools import find_packages, setup


setup(
    name="solfarm-sync",
    version="0.1.0",
    description="Farm catalog sync and hydration pipeline for Solana farms",
    packages=find_packages(include=["solfarm_sync", "solfarm_sync.*"]),
    python_requires=">=3.10",
    install_requires=[
        "aiohttp>=3.8",
        "cachetools>=5.0",
        "pydantic>=2.0",
        "solana>=0.30",
        "solders>=0.18",
    ],
    extras_require={
        "test": ["pytest>=7", "anyio>=3.6"],
    },
    entry_points={
        "console_scripts": ["solfarm-sync=solfarm_sync.cli:main"],
    },
)
