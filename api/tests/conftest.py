import os

os.environ.setdefault("IR_OTEL_ENABLED", "false")
os.environ.setdefault("IR_JOB_STORE_BACKEND", "memory")
