"""Setup file for development installation."""

from setuptools import setup, find_packages

setup(
    name="health-chat-relay",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.10",
    install_requires=[
        "fastapi",
        "pydantic>=2.4",
        "structlog",
        "google-generativeai",
        "google-api-core",
        "google-auth",
        "httpx",
        "prometheus-client",
        "opentelemetry-instrumentation-fastapi",
        "python-dotenv",
        "uvicorn",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "health-chat-relay=health_chat.__main__:main",
        ],
    },
)
