"""
ComicBookAI: turns a STEM topic into a short educational comic book.

The pipeline writes a multi-part story, derives three-panel image prompts in
batches, renders one image per prompt (with placeholder fallback), and stores the
finished book in Supabase.
"""

__version__ = "0.1.0"
