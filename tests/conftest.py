import os
import tempfile

# Must be set before compositor.core.settings is imported anywhere.
os.environ.setdefault("COMPOSITOR_RUNTIME_ROOT", tempfile.mkdtemp(prefix="compositor-tests-"))
