"""Setup script for hazard_locator package."""

from setuptools import setup, find_packages

setup(
    name="coastal-hazard-locator",
    version="0.1.0",
    description="Device location acquisition, caching and fallback for coastal hazard reporting",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.8",
    install_requires=[
        "pyserial>=3.5",
        "protobuf>=4.25.0",
        "requests>=2.31.0",
        "python-dotenv>=1.0.0",
        "pytz>=2023.3",
    ],
    extras_require={
        "meshtastic": [
            "meshtastic>=2.2.0",
            "pypubsub>=4.0.3",
        ],
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "hazard-locator=hazard_locator.main:main",
        ],
    },
)
