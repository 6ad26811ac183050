import uvicorn

from services.signs.config import load_config
from services.signs.main import build_app


def main() -> None:
    cfg = load_config()
    uvicorn.run(build_app(cfg), host=cfg.http_host, port=cfg.http_port)


if __name__ == "__main__":
    main()
