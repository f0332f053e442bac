import uvicorn

from ..config import Config


def main() -> None:
    config = Config.from_env()
    uvicorn.run(
        "runcore.api.main:create_app",
        factory=True,
        host=config.host,
        port=config.port,
        reload=False,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
