"""
Literate project loader.

Walks a directory tree or a single markdown file under gitignore-style
rules, parses each markdown document into block structure, extracts fenced
code blocks as tasks, and records the whole load as an ordered event log.
"""
