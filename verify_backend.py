import sys
from pathlib import Path

# Add backend to python path
backend_path = Path("backend").resolve()
sys.path.append(str(backend_path))

print(f"Checking imports from: {backend_path}")

try:
    # Importing the app pulls in every router, service, model and schema
    import lecture_live.main
    print("✅ Successfully imported lecture_live.main")

    from lecture_live.core.config import get_settings
    settings = get_settings()
    print(f"✅ Configuration loaded. ENV={settings.env} LLM={settings.llm_provider}")
    print(f"✅ Database Config: URL starts with {settings.database_url.split(':')[0]}")

    import sqlalchemy
    from google import genai
    from PIL import Image
    print(f"✅ SQLAlchemy {sqlalchemy.__version__}, google-genai and Pillow are installed")

    from lecture_live.db.session import engine
    from lecture_live.services.session_store import SessionStore
    SessionStore().ensure_schema()
    print(f"✅ lecture_session table ready on {engine.url.get_backend_name()}")

    if not settings.has_gemini:
        print("⚠️  GEMINI_API_KEY not set: live sessions and plan generation will fail")

    print("\nBackend integrity check passed!")

except ImportError as e:
    print(f"\n❌ Import Error: {e}")
    import traceback
    traceback.print_exc()
    sys.exit(1)
except Exception as e:
    print(f"\n❌ Startup Error: {e}")
    import traceback
    traceback.print_exc()
    sys.exit(1)
