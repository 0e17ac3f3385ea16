"""Content Publisher - publish Obsidian notes into a static site project"""

__version__ = "0.3.0"
