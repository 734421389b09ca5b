import os
import tempfile

# Keep log files and local storage out of the working tree during tests.
os.environ.setdefault("RISS_STORAGE_DIR", tempfile.mkdtemp(prefix="riss-tests-"))
