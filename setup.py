from setuptools import setup, find_packages

setup(
    name="serial-writer",
    version="0.1.0",
    packages=find_packages(include=["serial_writer", "serial_writer.*"]),
    install_requires=[
        "click>=8.1.7",
        "pydantic>=2.5.3",
        "pyyaml>=6.0.1",
        "rich>=13.7.0",
        "loguru>=0.7.2",
        "datasketch>=1.6.4",
        "numpy>=1.24.0",
        "google-genai>=1.0.0",
        "openai>=1.30.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "serial-writer=serial_writer.cli:main",
        ],
    },
    python_requires=">=3.10",
)
