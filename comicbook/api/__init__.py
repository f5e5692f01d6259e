"""
FastAPI surface for ComicBookAI: the stage endpoints and stored book lookups.
"""
