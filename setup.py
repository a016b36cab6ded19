from setuptools import find_packages, setup

setup(
    name="huepress-processing",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["app"],
    install_requires=[
        "fastapi>=0.110",
        "uvicorn>=0.27",
        "pydantic>=2.5",
        "aiohttp>=3.9",
        "python-dotenv>=1.0",
        "PyYAML>=6.0",
        "CairoSVG>=2.7",
        "Pillow>=10.0",
        "pypdf>=4.0",
        "defusedxml>=0.7",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
            "httpx>=0.25",
        ],
    },
    include_package_data=True,
    package_data={"services.derivatives": ["templates/*.svg"]},
    description="Derivative rendering service and job queue processor for HuePress assets",
)
