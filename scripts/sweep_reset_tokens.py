# scripts/sweep_reset_tokens.py
from broker.auth import models  # noqa: F401
from broker.core.config import load_settings
from broker.database.database import make_engine, make_session_factory
from broker.database.repositories import PasswordResetTokenRepository


def main():
    settings = load_settings()
    engine = make_engine(settings.database_url)
    db = make_session_factory(engine)()
    try:
        removed = PasswordResetTokenRepository(db).delete_expired()
        print(f"Removed expired reset tokens: {removed}")
    finally:
        db.close()
        engine.dispose()
    print("Done.")


if __name__ == "__main__":
    main()
