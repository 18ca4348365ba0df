"""python -m canteen 启动服务"""

import uvicorn

from .config.settings import settings

if __name__ == "__main__":
    uvicorn.run("canteen.app:app", host=settings.host, port=settings.port, reload=settings.debug)
