"""
notedraft - turn Markdown articles into note.com drafts through the web editor.
"""

__version__ = "0.3.0"
