from setuptools import setup, find_packages

setup(
    name="feedcache",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pydantic>=2",
        "pydantic-settings",
        "structlog",
        "prometheus_client"
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    python_requires=">=3.8",
)
