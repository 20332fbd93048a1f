#!/usr/bin/env python3
"""
Setup configuration for media-sync
Keeps a local music library cache in step with Jellyfin and Emby servers
"""

from setuptools import setup, find_packages

# Read README for long description
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Core requirements (always installed)
core_requirements = [
    "aiohttp>=3.9.1",
    "click>=8.1.7",
    "pyyaml>=6.0.1",
    "rich>=13.7.0",
    "rich-click>=1.7.0",
    "tqdm>=4.66.1",
]

setup(
    name="media-library-sync",
    version="0.1.0",
    author="media-sync Team",
    description="Synchronize a local music library cache with Jellyfin and Emby servers",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["media_sync", "media_sync.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Multimedia :: Sound/Audio",
    ],
    python_requires=">=3.10",
    install_requires=core_requirements,
    extras_require={
        "dev": [
            "pytest>=7.4.3",
            "pytest-asyncio>=0.21.1",
            "black>=23.11.0",
            "flake8>=6.1.0",
            "mypy>=1.7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "media-sync=media_sync.cli:main",
        ],
    },
    keywords="jellyfin emby music library sync cache cli",
)
