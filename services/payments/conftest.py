import os
import tempfile

# repo.py builds its engine at import time, so the test database is chosen here.
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(tempfile.mkdtemp(prefix="payments-"), "payments.db")
