"""Text generation: client, prompts, parsing and insight synthesis"""
