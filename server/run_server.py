import uvicorn

from rank_engine.core.settings import get_settings


def main():
    settings = get_settings()
    uvicorn.run("rank_engine.main:app", host=settings.api_host, port=settings.api_port, reload=True)


if __name__ == "__main__":
    main()
