[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "toykern"
version = "0.1.0"
description = "A small x86-64 hobby kernel modelled in Python: VGA terminal, printf-style formatting, paging, heap allocator, interrupt table and a page-table image generator"
requires-python = ">=3.10"
keywords = ["kernel", "paging", "x86-64", "vga", "allocator", "idt", "page tables"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Operating System Kernels",
]
dependencies = []

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
toykern-pagegen = "toykern.pagegen:main"

[tool.hatch.build.targets.wheel]
packages = ["toykern"]

[tool.pytest.ini_options]
addopts = "-ra"
