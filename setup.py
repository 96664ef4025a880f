# setup.py

from setuptools import find_packages, setup

setup(
    name="siteqa",
    version="0.1.0",
    description="Crawl a website and retrieve the passages that answer a question",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    install_requires=[
        "aiohttp>=3.9",
        "beautifulsoup4>=4.12",
        "flask>=3.0.0",
        "flask-caching>=2.3.0",
        "flask-limiter>=3.5.0",
        "bleach>=6.0.0",
        "nltk>=3.9.0",
        "numpy>=1.26",
        "scikit-learn>=1.3.2",
        "faiss-cpu>=1.7.4",
        "sentence-transformers>=2.2.2",
        "tenacity>=8.2",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Internet :: WWW/HTTP :: Indexing/Search",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "siteqa=siteqa.cli:main",
        ],
    },
)
