"""Prompt side of a run: vocabulary, picks, mutation and prompt text.

- vocabulary: closed word lists per pick field + YAML templates
- mutation: child picks derived from a parent's metadata
- synthesizer: prompt and headline rendering
"""
