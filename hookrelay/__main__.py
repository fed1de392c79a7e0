import uvicorn

from .config import settings


def main() -> None:
    uvicorn.run("hookrelay.main:app", host="0.0.0.0", port=settings.PORT)


if __name__ == "__main__":
    main()
