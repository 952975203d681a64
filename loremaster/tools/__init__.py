"""
Tool Integration Layer.

Adapters for capabilities a tool-calling model may invoke mid-answer,
currently the player and GM manual searches.
"""
