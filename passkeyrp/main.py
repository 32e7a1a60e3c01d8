"""passkeyrp entrypoint."""

import uvicorn

from passkeyrp.config.settings import get_settings


def cli() -> None:
    """CLI entrypoint."""
    settings = get_settings()
    uvicorn.run("passkeyrp.web.app:create_app", factory=True, reload=settings.debug, port=3000)


if __name__ == "__main__":
    cli()
