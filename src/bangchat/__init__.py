"""
bangchat - streaming chat runtime with line-directive tools.

A language model backend streams its reply; lines that start with '!' are
routed to registered tools and their output is fed back as a System turn.
"""

__version__ = "0.3.0"
