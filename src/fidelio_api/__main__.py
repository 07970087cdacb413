import uvicorn

from .core.settings import settings


def main() -> None:
    uvicorn.run(
        "fidelio_api.app:create_app",
        factory=True,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":
    main()
