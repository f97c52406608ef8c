from pathlib import Path

from setuptools import find_packages, setup


this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding="utf-8")


setup(
    name="perp-lp-maker",
    version="0.1.0",
    description="Range liquidity maker for Perp v2 with hedge venue offsetting",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["config"],
    install_requires=[
        "requests",
        "web3>=7.0,<8",
        "eth-account>=0.13",
        "pyyaml",  # For configs/config.yaml strategy file
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "perp-lp-maker=maker.main:main",
        ],
    },
    python_requires=">=3.8",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
