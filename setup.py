from setuptools import setup, find_packages

setup(
    name="ghostline-remote",
    version="4.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["main"],
    include_package_data=True,
    install_requires=[
        "python-telegram-bot>=21.0",
        "httpx>=0.25.0",
        "pydantic>=2.6.0",
        "click>=8.1.7",
        "rich>=13.7.0",
        "cryptography>=41.0.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "ghostline=ghostline.cli:main",
        ],
    },
    python_requires=">=3.10",
    author="Ghostline",
    description="Telegram remote control for the Ghostline control system",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
