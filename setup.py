"""Setup script for the Parking Lot Backend."""

from setuptools import setup, find_packages

setup(
    name="parking-lot-backend",
    version="1.0.0",
    description="Parking lot management backend: cars, spots, reservations and Stripe balance payments",
    author="Smart Parking Lot Team",
    python_requires=">=3.10",
    packages=find_packages(include=["parking_lot", "parking_lot.*"]),
    install_requires=[
        line.strip()
        for line in open("requirements.txt")
        if line.strip() and not line.startswith("#") and not line.startswith("git+")
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "httpx>=0.27.0",
            "aiosqlite>=0.19.0",
        ],
        "dev": [
            "black>=23.0.0",
            "isort>=5.12.0",
            "flake8>=6.0.0",
            "mypy>=1.4.0",
            "pytest-cov>=4.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "parking-lot-api=parking_lot.api.main:run",
        ]
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Framework :: FastAPI",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
