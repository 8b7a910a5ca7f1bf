from setuptools import setup, find_packages

setup(
    name="mcp-server-roam-import",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "mcp[cli]>=1.0,<2",
        "pydantic>=2.0",
        "requests>=2.28",
        "python-dotenv>=1.0",
        "click>=8.0",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-mock",
            "pytest-asyncio",
        ],
        "dev": [
            "pytest",
            "pytest-mock",
            "pytest-asyncio",
            "black",
            "mypy",
            "ruff",
        ]
    },
    entry_points={
        "console_scripts": [
            "mcp-server-roam-import=mcp_server_roam_import:main",
        ]
    },
    python_requires=">=3.10",
)
