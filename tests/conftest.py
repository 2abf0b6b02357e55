import os

# Provide minimal env for Settings validation during import.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-value-that-is-long-enough-0123456789")
os.environ.setdefault("FRONTEND_URL", "http://portal.test")
