import os

# Environment-driven settings. Read once at import; tests pass explicit values
# to constructors instead of patching these.

OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

_DEFAULT_DB_PATH = os.path.join(os.getcwd(), ".profilestack.db")
DATABASE_URL = os.getenv("PROFILESTACK_DATABASE_URL", f"sqlite:///{_DEFAULT_DB_PATH}")

# "browser" keeps guest data in localStorage, "file" in a JSON file next to the app
LOCAL_STORE = os.getenv("PROFILESTACK_LOCAL_STORE", "browser").strip().lower()
LOCAL_STATE_PATH = os.getenv(
    "PROFILESTACK_LOCAL_STATE_PATH",
    os.path.join(os.getcwd(), ".profilestack_local.json"),
)

LOG_LEVEL = os.getenv("PROFILESTACK_LOG_LEVEL", "INFO").upper()

# Provider name configured under [auth.<name>] in .streamlit/secrets.toml
AUTH_PROVIDER = os.getenv("PROFILESTACK_AUTH_PROVIDER", "google")
