import os
import tempfile

os.environ.setdefault("BUILDLEDGER_DATA_DIR", tempfile.mkdtemp(prefix="buildledger-"))
os.environ.setdefault("BUILDLEDGER_DATABASE_URL", "sqlite://")
os.environ.setdefault("BUILDLEDGER_TIMEZONE", "UTC")
