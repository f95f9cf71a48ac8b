import os

# Settings are read at import time; keep tests independent of any local .env values.
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_ALGORITHM", "HS256")
os.environ["DATABASE_URL"] = ""
os.environ["OPENAI_API_KEY"] = ""
os.environ["VOYAGE_API_KEY"] = ""
os.environ["GEMINI_API_KEY"] = ""
