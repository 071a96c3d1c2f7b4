"""Allow ``python -m Datastore``."""

from .cli import app

if __name__ == "__main__":  # pragma: no cover - exercised via the console script
    app()
