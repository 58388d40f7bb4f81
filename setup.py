from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="model-lifecycle",
    version="0.1.0",
    author="Your Name",
    author_email="your.email@example.com",
    description="Model download and inference engine lifecycle manager for Ollama-style backends",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/spencermcbridemoore/model-lifecycle",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
    install_requires=[
        "httpx>=0.25.0",  # Streaming pulls and Ollama REST calls
        "tenacity>=8.2.0",  # Download retry/backoff
        "python-dotenv>=1.0.0",
        "openai>=1.0.0",  # OpenAI-compatible catalogs and engine inference
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "black>=22.0.0",
            "flake8>=5.0.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "model-lifecycle=model_lifecycle.cli:main",
        ],
    },
)
