"""Environment shared by every test suite; set before the app settings load."""

import os

os.environ["APP_ENV"] = "test"
os.environ["JWT_SECRET"] = "test-secret-key"  # pragma: allowlist secret
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["CHAT_SESSION_BACKEND"] = "memory"
os.environ["OPENAI_API_KEY"] = ""
os.environ["AZURE_OPENAI_API_KEY"] = ""
os.environ["SHOP_TIMEZONE"] = "America/Toronto"
