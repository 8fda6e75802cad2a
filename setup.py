from setuptools import setup

with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
    name="sonos-group",
    version="1.0.0",
    author="Your Name",
    description="List Sonos zones and join them for synchronized playback",
    long_description=long_description,
    long_description_content_type="text/markdown",
    py_modules=["sonos_group"],
    python_requires=">=3.8",
    install_requires=[
        "soco>=0.30.0",
        "requests>=2.25.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "sonos-group=sonos_group:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
)
